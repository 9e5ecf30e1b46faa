"""
=============================================================================
DATABASE.PY — Configuración de la Base de Datos
=============================================================================
Este archivo configura la conexión a la base de datos.

En DESARROLLO: usa SQLite (un archivo .db)
En PRODUCCIÓN: usa PostgreSQL

¿Cómo sabe cuál usar?
→ Si existe la variable de entorno DATABASE_URL, usa esa URL.
→ Si no existe, usa SQLite local.

Los tests usan "sqlite://" (SQLite en memoria). En ese caso todas las
sesiones deben compartir UNA sola conexión, si no cada sesión vería
una base de datos vacía distinta → StaticPool.
"""

import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

# ─────────────────────────────────────────────────────────────────────────────
# CONEXIÓN
# ─────────────────────────────────────────────────────────────────────────────

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./fitrooms.db")

# Muchos proveedores dan la URL con "postgres://" pero SQLAlchemy necesita
# "postgresql://". Además usamos psycopg (v3) como driver.
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg://", 1)
elif DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+psycopg://", 1)

# ─────────────────────────────────────────────────────────────────────────────
# ENGINE
# ─────────────────────────────────────────────────────────────────────────────
# connect_args={"check_same_thread": False} → solo necesario para SQLite
# porque SQLite no permite acceso desde múltiples hilos por defecto
# (los jobs del scheduler corren en otro hilo).

engine_args = {}
if DATABASE_URL.startswith("sqlite"):
    engine_args["connect_args"] = {"check_same_thread": False}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        engine_args["poolclass"] = StaticPool

engine = create_engine(DATABASE_URL, echo=False, **engine_args)

# ─────────────────────────────────────────────────────────────────────────────
# SESSION
# ─────────────────────────────────────────────────────────────────────────────

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ─────────────────────────────────────────────────────────────────────────────
# BASE
# ─────────────────────────────────────────────────────────────────────────────

Base = declarative_base()


def get_db():
    """
    Generador que crea una sesión de BD y la cierra al terminar.

    Se usa como "dependencia" en FastAPI:
      @app.get("/algo")
      def mi_endpoint(db: Session = Depends(get_db)):
          ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def upsert(db, model, values: dict, keys: tuple, update: tuple):
    """
    INSERT ... ON CONFLICT (keys) DO UPDATE SET (update).

    Lo usan la liquidación diaria y los rankings: dos ejecuciones
    concurrentes del mismo día no duplican filas, gana la última escritura.
    PostgreSQL y SQLite lo soportan de forma nativa; para cualquier otro
    motor se hace "buscar y actualizar o insertar".
    No hace commit: eso lo decide quien llama.
    """
    dialect = db.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        stmt = insert(model).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(keys),
            set_={column: stmt.excluded[column] for column in update},
        )
        db.execute(stmt)
        return

    filters = [getattr(model, key) == values[key] for key in keys]
    existing = db.query(model).filter(*filters).first()
    if existing:
        for column in update:
            setattr(existing, column, values[column])
    else:
        db.add(model(**values))
    db.flush()


def init_db():
    """
    Crea todas las tablas en la BD si no existen.
    Se llama una vez al arrancar la aplicación.
    """
    import models  # noqa: F401  registra las tablas en Base.metadata
    Base.metadata.create_all(bind=engine)
