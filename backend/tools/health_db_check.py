import json

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from bazaar import create_app
from bazaar.extensions import db
from bazaar.services.transition_strategies import check_atomic_capability


def _safe_uri(uri: str) -> str:
    if not uri:
        return "unknown"
    try:
        return make_url(uri).render_as_string(hide_password=True)
    except ArgumentError:
        return "unknown"


def main():
    app = create_app()
    with app.app_context():
        uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
        print("SQLALCHEMY_DATABASE_URI:", _safe_uri(uri))
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            print("SELECT 1: fail")
            print("error:", str(e)[:300])
            return 1
        print("SELECT 1: success")
        report = check_atomic_capability(refresh=True)
        print("escrow capability:", json.dumps(report.to_dict()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
