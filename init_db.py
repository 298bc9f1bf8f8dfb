# init_db.py
import logging

from movieswipe.database import Base, engine
from movieswipe import models  # noqa: F401 registers the tables on Base
from movieswipe.catalog import CatalogError, TMDBCatalog


def check_catalog():
    catalog = TMDBCatalog()
    try:
        genres = catalog.genres()
        logging.info(f"Movie catalog reachable, {len(genres)} genres available.")
    except CatalogError as e:
        logging.warning(f"Movie catalog check failed: {e}. Recommendations will be unavailable until this is fixed.")
    finally:
        catalog.close()


def main():
    logging.info("Initializing database...")
    Base.metadata.create_all(bind=engine) # Create tables if they don't exist
    logging.info(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")
    check_catalog()


if __name__ == "__main__":
    main()
