import uvicorn

from .seed import seed


def main() -> None:
    seed()
    uvicorn.run("evride.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
