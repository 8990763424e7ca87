import uvicorn

from lingua.config import settings


def main() -> None:
    uvicorn.run("lingua.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
