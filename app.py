import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify

from src.agents.deck_agent import get_blueprint
from src.db.generation_log import get_log_store

DEFAULT_HOST = os.environ.get("FLASK_RUN_HOST", "localhost")
DEFAULT_PORT = int(os.environ.get("FLASK_RUN_PORT", "5000"))


def create_app(config: dict | None = None) -> Flask:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    if config:
        app.config.update(config)
    app.register_blueprint(get_blueprint())

    @app.route("/health")
    def health():
        return jsonify(
            {
                "status": "ok",
                "provider": os.environ.get("DECK_LLM_PROVIDER", "anthropic"),
                "logBackend": type(get_log_store()).__name__,
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    app.run(host=DEFAULT_HOST, port=DEFAULT_PORT, debug=True)
