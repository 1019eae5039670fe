# file: main.py
import logging

from fastapi import FastAPI

from config import HOST, LOG_LEVEL, OPENAI_API_KEY, PORT
from routes import Routes

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def create_app(**collaborators) -> FastAPI:
    app = FastAPI(title="Realtime Call Relay")
    app.state.routes = Routes(app, **collaborators)
    return app


app = create_app()


def main():
    if not OPENAI_API_KEY:
        raise ValueError("Missing the OpenAI API key. Please set it in the .env file.")
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
