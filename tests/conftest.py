"""
Configuración de pytest y fixtures compartidas.

La BD de los tests es SQLite en memoria: las variables de entorno se
fijan ANTES de importar cualquier módulo de la app.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["REFERENCE_TIMEZONE"] = "Asia/Shanghai"

from datetime import date, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from database import Base, SessionLocal, engine
from models import (
    Checkin, DailyStat, Room, RoomMember, Team, TeamMember, TeamScore, User
)

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


@pytest.fixture(autouse=True)
def fresh_tables():
    """Tablas vacías en cada test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from main import app
    return TestClient(app)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.username)}"}


# ─────────────────────────────────────────────────────────────────────────────
# FACTORÍAS
# ─────────────────────────────────────────────────────────────────────────────

class Factory:
    """Crea filas de prueba y hace commit de cada una"""

    def __init__(self, session):
        self.db = session
        self._codes = 0

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def user(self, username: str = "ana", timezone: str = "Asia/Shanghai", display_name: str = None) -> User:
        return self._save(User(username=username, timezone=timezone, display_name=display_name))

    def room(self, name: str = "Sala", owner: User = None, created_at: datetime = None) -> Room:
        self._codes += 1
        room = Room(name=name, code=f"R{self._codes:05d}", owner_id=owner.id if owner else None)
        if created_at:
            room.created_at = created_at
        return self._save(room)

    def join(self, room: Room, *users: User) -> None:
        for user in users:
            self._save(RoomMember(room_id=room.id, user_id=user.id))

    def team(self, room: Room, name: str, *members: User, created_at: datetime = None) -> Team:
        team = Team(room_id=room.id, name=name)
        if created_at:
            team.created_at = created_at
        team = self._save(team)
        for index, user in enumerate(members):
            self._save(TeamMember(
                team_id=team.id, user_id=user.id,
                joined_at=datetime(2024, 1, 1) + timedelta(minutes=index)
            ))
        return team

    def checkin(self, user: User, room: Room, day: date) -> Checkin:
        return self._save(Checkin(user_id=user.id, room_id=room.id, for_date=day))

    def daily_stat(self, user: User, room: Room, day: date, done: bool) -> DailyStat:
        return self._save(DailyStat(user_id=user.id, room_id=room.id, stat_date=day, did_checkin=done))

    def score(self, team: Team, day: date, points: int, reason: str = "all_members_completed") -> TeamScore:
        return self._save(TeamScore(team_id=team.id, room_id=team.room_id, score_date=day,
                                    points=points, reason=reason))


@pytest.fixture
def make(db):
    return Factory(db)


@pytest.fixture
def auth():
    return auth_headers


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)
