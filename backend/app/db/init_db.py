from app.db.base import Base
from app.db.session import engine
import app.db.models  # noqa


def init_db(bind=None):
    Base.metadata.create_all(bind=bind or engine)


if __name__ == "__main__":
    init_db()
