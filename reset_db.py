from analytics_engine import models  # noqa: F401  registers the tables
from analytics_engine.core.database import Base, engine, init_db

def reset_db():
    Base.metadata.drop_all(bind=engine)
    print("Dropped all analytics tables")
    init_db()
    print("Created all analytics tables with default settings")

if __name__ == "__main__":
    reset_db()
