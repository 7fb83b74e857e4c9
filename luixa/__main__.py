import uvicorn

from luixa.core.config import PORT


def main() -> None:
    uvicorn.run("luixa.main:app", host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
