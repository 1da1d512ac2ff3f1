import uvicorn

from ..common.config import settings


def main():
    uvicorn.run("sendrec_media.api.app:app", host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
