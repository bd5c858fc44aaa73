import uvicorn

from quizsync import config

if __name__ == "__main__":
    uvicorn.run(
        "quizsync.server:app",
        host=config.HOST,
        port=config.PORT,
        reload=True,
        reload_dirs=["quizsync"],
    )
