from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    ForeignKey,
    ForeignKeyConstraint,
    Integer,
    String,
    create_engine,
    delete,
    event,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, joinedload, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from wordrooms.api.models import GameState, GameStatus, Player, PlayerUpdate, Room, RoomUpdate
from wordrooms.errors import StoreFailure
from wordrooms.store.base import RoomStore


logger = logging.getLogger(__name__)

Base = declarative_base()

_PLAYING = GameStatus.playing.value


class RoomRow(Base):
    __tablename__ = "rooms"

    code = Column(String(6), primary_key=True)
    host_id = Column(String, nullable=False)
    target_word = Column(String(5), nullable=False)
    game_state = Column(JSON, nullable=False)
    # Mirrors game_state.gameStatus so conditional updates can filter on it.
    game_status = Column(String, nullable=False, default=_PLAYING)
    round_no = Column(Integer, nullable=False, default=1)
    created_at_ms = Column(BigInteger, nullable=False)

    players = relationship(
        "PlayerRow",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by=lambda: [PlayerRow.joined_at_ms, PlayerRow.id],
    )
    ready_marks = relationship("ReadyMarkRow", cascade="all, delete-orphan")


class PlayerRow(Base):
    __tablename__ = "room_players"

    room_code = Column(String(6), ForeignKey("rooms.code", ondelete="CASCADE"), primary_key=True)
    id = Column(String, primary_key=True)
    nickname = Column(String, nullable=False)
    guesses = Column(Integer, nullable=False, default=0)
    words_guessed = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=_PLAYING)
    last_active_ms = Column(BigInteger, nullable=False)
    current_guess = Column(String, nullable=False, default="")
    joined_at_ms = Column(BigInteger, nullable=False)

    room = relationship("RoomRow", back_populates="players")


class ReadyMarkRow(Base):
    __tablename__ = "room_ready_marks"
    __table_args__ = (
        ForeignKeyConstraint(
            ["room_code", "player_id"],
            ["room_players.room_code", "room_players.id"],
            ondelete="CASCADE",
        ),
    )

    room_code = Column(String(6), ForeignKey("rooms.code", ondelete="CASCADE"), primary_key=True)
    player_id = Column(String, primary_key=True)


def create_sql_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    in_memory = url in ("sqlite://", "sqlite:///:memory:")
    kwargs: dict[str, object] = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if in_memory:
        # One shared connection, otherwise every pool checkout sees an empty database.
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _enable_sqlite_fks(dbapi_conn, _record):  # type: ignore[no-untyped-def]
        if not in_memory:
            # Let SQLAlchemy emit BEGIN itself (see _begin_immediate).
            dbapi_conn.isolation_level = None
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    if not in_memory:

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):  # type: ignore[no-untyped-def]
            # Take the write lock up front so concurrent writers queue on the busy
            # timeout instead of failing a read-to-write lock upgrade.
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def _room_from_row(row: RoomRow) -> Room:
    return Room(
        code=row.code,
        host_id=row.host_id,
        target_word=row.target_word,
        game_state=GameState.model_validate(row.game_state),
        ready_players={m.player_id for m in row.ready_marks},
        created_at_ms=row.created_at_ms,
        round_no=row.round_no,
        players=[_player_from_row(p) for p in row.players],
    )


def _player_from_row(row: PlayerRow) -> Player:
    return Player(
        id=row.id,
        nickname=row.nickname,
        guesses=row.guesses,
        words_guessed=row.words_guessed,
        status=GameStatus(row.status),
        last_active_ms=row.last_active_ms,
        current_guess=row.current_guess or "",
    )


def _player_row(code: str, p: Player) -> PlayerRow:
    return PlayerRow(
        room_code=code,
        id=p.id,
        nickname=p.nickname,
        guesses=p.guesses,
        words_guessed=p.words_guessed,
        status=p.status.value,
        last_active_ms=p.last_active_ms,
        current_guess=p.current_guess,
        joined_at_ms=p.last_active_ms,
    )


def _dump_state(gs: GameState) -> dict:
    return gs.model_dump(mode="json", by_alias=True)


class SqlRoomStore(RoomStore):
    """Relational backend: rooms, players and ready marks as related rows.

    Writes are per column / per row, so requests touching disjoint fields never
    overwrite each other. Decisions that depend on several rows (game-state
    freeze, round completion, the round barrier) are single conditional
    statements, which keeps them atomic without explicit locking.
    """

    def __init__(self, *, url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None:
            if not url:
                raise ValueError("SqlRoomStore needs a database url or an engine")
            engine = create_sql_engine(url)
        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        Base.metadata.create_all(bind=engine)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self._sessions.begin() as db:
                yield db
        except SQLAlchemyError as e:
            logger.exception("Room store operation failed")
            raise StoreFailure("Room store operation failed") from e

    def close(self) -> None:
        self._engine.dispose()

    def create_room(self, room: Room) -> bool:
        try:
            with self._sessions.begin() as db:
                db.add(
                    RoomRow(
                        code=room.code,
                        host_id=room.host_id,
                        target_word=room.target_word,
                        game_state=_dump_state(room.game_state),
                        game_status=room.game_state.game_status.value,
                        round_no=room.round_no,
                        created_at_ms=room.created_at_ms,
                    )
                )
                db.flush()
                for p in room.players:
                    db.add(_player_row(room.code, p))
                db.flush()
                for pid in room.ready_players & room.player_ids:
                    db.add(ReadyMarkRow(room_code=room.code, player_id=pid))
            return True
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            logger.exception("Failed to create room %s", room.code)
            raise StoreFailure("Failed to create room") from e

    def get_room(self, code: str) -> Room | None:
        # Single SELECT with joined loads: room, players and ready marks come from one snapshot.
        stmt = (
            select(RoomRow)
            .options(joinedload(RoomRow.players), joinedload(RoomRow.ready_marks))
            .where(RoomRow.code == code)
        )
        with self._transaction() as db:
            row = db.execute(stmt).unique().scalar_one_or_none()
            return _room_from_row(row) if row is not None else None

    def update_room(self, code: str, changes: RoomUpdate) -> bool:
        fields = changes.model_fields_set
        with self._transaction() as db:
            if "target_word" in fields and changes.target_word is not None:
                db.execute(
                    update(RoomRow)
                    .where(RoomRow.code == code)
                    .values(target_word=changes.target_word.upper())
                    .execution_options(synchronize_session=False)
                )

            if "ready_players" in fields and changes.ready_players is not None:
                wanted = sorted(set(changes.ready_players))
                db.execute(
                    delete(ReadyMarkRow)
                    .where(ReadyMarkRow.room_code == code, ReadyMarkRow.player_id.not_in(wanted))
                    .execution_options(synchronize_session=False)
                )
                if wanted:
                    present = set(
                        db.scalars(select(PlayerRow.id).where(PlayerRow.room_code == code, PlayerRow.id.in_(wanted)))
                    )
                    marked = set(db.scalars(select(ReadyMarkRow.player_id).where(ReadyMarkRow.room_code == code)))
                    for pid in sorted(present - marked):
                        db.add(ReadyMarkRow(room_code=code, player_id=pid))
                    db.flush()

            if "game_state" in fields and changes.game_state is not None:
                gs = changes.game_state
                res = db.execute(
                    update(RoomRow)
                    .where(RoomRow.code == code, RoomRow.game_status == _PLAYING)
                    .values(game_state=_dump_state(gs), game_status=gs.game_status.value)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount == 1 and gs.game_status == GameStatus.playing:
                    db.execute(
                        delete(ReadyMarkRow)
                        .where(ReadyMarkRow.room_code == code)
                        .execution_options(synchronize_session=False)
                    )

            return db.execute(select(RoomRow.code).where(RoomRow.code == code)).first() is not None

    def add_or_touch_player(self, code: str, player: Player) -> bool:
        # Insert first: the (room_code, id) primary key makes duplicate joins collapse
        # into the update path, and the room foreign key rejects joins to deleted rooms.
        try:
            with self._sessions.begin() as db:
                db.add(_player_row(code, player))
            return True
        except IntegrityError:
            pass
        except SQLAlchemyError as e:
            logger.exception("Failed to add player %s to room %s", player.id, code)
            raise StoreFailure("Failed to add player") from e

        with self._transaction() as db:
            res = db.execute(
                update(PlayerRow)
                .where(PlayerRow.room_code == code, PlayerRow.id == player.id)
                .values(nickname=player.nickname, last_active_ms=player.last_active_ms)
                .execution_options(synchronize_session=False)
            )
            return res.rowcount == 1

    def update_player(self, code: str, player_id: str, changes: PlayerUpdate, *, now_ms: int) -> bool:
        fields = changes.model_fields_set
        values: dict[str, object] = {"last_active_ms": now_ms}
        if "guesses" in fields and changes.guesses is not None:
            values["guesses"] = changes.guesses
        if "current_guess" in fields and changes.current_guess is not None:
            values["current_guess"] = changes.current_guess

        with self._transaction() as db:
            res = db.execute(
                update(PlayerRow)
                .where(PlayerRow.room_code == code, PlayerRow.id == player_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                return False

            if "status" in fields and changes.status is not None and changes.status.is_terminal:
                # Only the playing -> terminal edge counts a completed round.
                db.execute(
                    update(PlayerRow)
                    .where(
                        PlayerRow.room_code == code,
                        PlayerRow.id == player_id,
                        PlayerRow.status == _PLAYING,
                    )
                    .values(status=changes.status.value, words_guessed=PlayerRow.words_guessed + 1)
                    .execution_options(synchronize_session=False)
                )
            return True

    def remove_player(self, code: str, player_id: str) -> bool:
        with self._transaction() as db:
            db.execute(
                delete(ReadyMarkRow)
                .where(ReadyMarkRow.room_code == code, ReadyMarkRow.player_id == player_id)
                .execution_options(synchronize_session=False)
            )
            db.execute(
                delete(PlayerRow)
                .where(PlayerRow.room_code == code, PlayerRow.id == player_id)
                .execution_options(synchronize_session=False)
            )
            return db.execute(select(RoomRow.code).where(RoomRow.code == code)).first() is not None

    def list_active_players(self, code: str) -> list[Player]:
        stmt = (
            select(PlayerRow)
            .where(PlayerRow.room_code == code)
            .order_by(PlayerRow.joined_at_ms, PlayerRow.id)
        )
        with self._transaction() as db:
            return [_player_from_row(p) for p in db.scalars(stmt)]

    def set_ready(self, code: str, player_id: str, ready: bool) -> bool:
        if not ready:
            with self._transaction() as db:
                db.execute(
                    delete(ReadyMarkRow)
                    .where(ReadyMarkRow.room_code == code, ReadyMarkRow.player_id == player_id)
                    .execution_options(synchronize_session=False)
                )
                return db.get(PlayerRow, (code, player_id)) is not None

        try:
            with self._sessions.begin() as db:
                if db.get(PlayerRow, (code, player_id)) is None:
                    return False
                if db.get(ReadyMarkRow, (code, player_id)) is None:
                    db.add(ReadyMarkRow(room_code=code, player_id=player_id))
            return True
        except IntegrityError:
            # A concurrent request marked the same player first.
            return True
        except SQLAlchemyError as e:
            logger.exception("Failed to mark player %s ready in room %s", player_id, code)
            raise StoreFailure("Failed to update ready state") from e

    def advance_round(self, code: str, *, expected_round: int, target_word: str) -> bool:
        unready = (
            select(PlayerRow.id)
            .where(PlayerRow.room_code == code)
            .where(
                ~select(ReadyMarkRow.player_id)
                .where(ReadyMarkRow.room_code == PlayerRow.room_code, ReadyMarkRow.player_id == PlayerRow.id)
                .exists()
            )
        )
        has_players = select(PlayerRow.id).where(PlayerRow.room_code == code).exists()

        with self._transaction() as db:
            res = db.execute(
                update(RoomRow)
                .where(
                    RoomRow.code == code,
                    RoomRow.round_no == expected_round,
                    RoomRow.game_status != _PLAYING,
                    has_players,
                    ~unready.exists(),
                )
                .values(
                    target_word=target_word.upper(),
                    game_state=_dump_state(GameState.fresh()),
                    game_status=_PLAYING,
                    round_no=expected_round + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                return False

            db.execute(
                update(PlayerRow)
                .where(PlayerRow.room_code == code)
                .values(guesses=0, status=_PLAYING, current_guess="")
                .execution_options(synchronize_session=False)
            )
            db.execute(
                delete(ReadyMarkRow)
                .where(ReadyMarkRow.room_code == code)
                .execution_options(synchronize_session=False)
            )
            return True

    def remove_inactive_players(self, code: str, *, cutoff_ms: int) -> list[str]:
        with self._transaction() as db:
            stale = list(
                db.scalars(
                    select(PlayerRow.id).where(PlayerRow.room_code == code, PlayerRow.last_active_ms < cutoff_ms)
                )
            )
            if not stale:
                return []
            db.execute(
                delete(ReadyMarkRow)
                .where(ReadyMarkRow.room_code == code, ReadyMarkRow.player_id.in_(stale))
                .execution_options(synchronize_session=False)
            )
            db.execute(
                delete(PlayerRow)
                .where(PlayerRow.room_code == code, PlayerRow.id.in_(stale))
                .execution_options(synchronize_session=False)
            )
            return stale

    def delete_room(self, code: str) -> bool:
        with self._transaction() as db:
            db.execute(
                delete(ReadyMarkRow).where(ReadyMarkRow.room_code == code).execution_options(synchronize_session=False)
            )
            db.execute(
                delete(PlayerRow).where(PlayerRow.room_code == code).execution_options(synchronize_session=False)
            )
            res = db.execute(
                delete(RoomRow).where(RoomRow.code == code).execution_options(synchronize_session=False)
            )
            return res.rowcount == 1

    def delete_room_if_empty(self, code: str) -> bool:
        has_players = select(PlayerRow.id).where(PlayerRow.room_code == code).exists()
        with self._transaction() as db:
            res = db.execute(
                delete(RoomRow)
                .where(RoomRow.code == code, ~has_players)
                .execution_options(synchronize_session=False)
            )
            return res.rowcount == 1

    def list_room_codes(self) -> list[str]:
        with self._transaction() as db:
            return list(db.scalars(select(RoomRow.code).order_by(RoomRow.created_at_ms)))
