from collections.abc import Generator

from db.session import SessionLocalRental


def get_rental_db() -> Generator:
    db = SessionLocalRental()
    try:
        yield db
    finally:
        db.close()
