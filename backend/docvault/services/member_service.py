import threading
import time
import uuid
from dataclasses import dataclass

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from docvault.database import utcnow
from docvault.models.member import Member
from docvault.utils.security import generate_token, hash_password, verify_password

ROLES = ("member", "admin")


@dataclass(frozen=True)
class Caller:
    id: str
    role: str = "member"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class MemberExists(Exception):
    pass


class MemberService:
    """Registers members and turns bearer tokens into a ``Caller``.

    Tokens are opaque and held in memory; a restart signs everyone out.
    """

    def __init__(self, session_factory: sessionmaker, token_ttl_seconds: int = 3600):
        self._session_factory = session_factory
        self.token_ttl_seconds = token_ttl_seconds
        self._lock = threading.Lock()
        self._active_tokens: dict[str, tuple[Caller, float]] = {}  # token -> (caller, expires_at)

    def _cleanup_expired(self):
        now = time.time()
        self._active_tokens = {
            t: (caller, exp) for t, (caller, exp) in self._active_tokens.items() if exp > now
        }

    def register(self, email: str, password: str, role: str = "member") -> Member:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        with self._session_factory() as db:
            member = Member(
                id=str(uuid.uuid4()),
                email=email.strip().lower(),
                password_hash=hash_password(password),
                role=role,
                created_at=utcnow(),
            )
            db.add(member)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise MemberExists(email) from exc
            return member

    def ensure_admin(self, email: str, password: str) -> Member:
        """Create the admin account, or promote an existing member with that email.

        An existing member keeps their password.
        """
        with self._session_factory() as db:
            member = db.scalars(select(Member).where(Member.email == email.strip().lower())).first()
            if member is not None:
                if member.role != "admin":
                    member.role = "admin"
                    db.commit()
                return member
        return self.register(email, password, role="admin")

    def login(self, email: str, password: str, throttle_key: str) -> dict | None:
        with self._session_factory() as db:
            delay = self._get_throttle_delay(db, throttle_key)
            if delay > 0:
                return {"error": "too_many_attempts", "retry_after_seconds": delay}

            member = db.scalars(select(Member).where(Member.email == email.strip().lower())).first()
            if member is None or not verify_password(member.password_hash, password):
                self._record_failed_attempt(db, throttle_key)
                return None

            self._reset_failed_attempts(db, throttle_key)
            caller = Caller(id=member.id, role=member.role)

        token = generate_token()
        with self._lock:
            self._active_tokens[token] = (caller, time.time() + self.token_ttl_seconds)
        return {"token": token, "expires_in_seconds": self.token_ttl_seconds}

    def logout(self, token: str):
        with self._lock:
            self._active_tokens.pop(token, None)

    def validate_token(self, token: str) -> Caller | None:
        with self._lock:
            self._cleanup_expired()
            entry = self._active_tokens.get(token)
        return entry[0] if entry else None

    def _get_throttle_delay(self, db: Session, key: str) -> float:
        row = db.execute(
            text("SELECT failed_attempts, last_failed_at FROM auth_throttle WHERE key = :key"),
            {"key": key},
        ).fetchone()
        if not row:
            return 0
        failed_attempts = int(row[0])
        last_failed_at = float(row[1])

        if failed_attempts < 3:
            return 0
        if failed_attempts < 5:
            delay = 5.0
        elif failed_attempts < 10:
            delay = 30.0
        else:
            delay = 300.0
        elapsed = time.time() - last_failed_at
        remaining = delay - elapsed
        return max(0, remaining)

    def _record_failed_attempt(self, db: Session, key: str):
        now = time.time()
        db.execute(
            text(
                """
                INSERT INTO auth_throttle (key, failed_attempts, last_failed_at)
                VALUES (:key, 1, :now)
                ON CONFLICT(key) DO UPDATE SET
                    failed_attempts = failed_attempts + 1,
                    last_failed_at = :now
                """
            ),
            {"key": key, "now": now},
        )
        db.commit()

    def _reset_failed_attempts(self, db: Session, key: str):
        db.execute(
            text(
                """
                INSERT INTO auth_throttle (key, failed_attempts, last_failed_at)
                VALUES (:key, 0, :now)
                ON CONFLICT(key) DO UPDATE SET
                    failed_attempts = 0,
                    last_failed_at = :now
                """
            ),
            {"key": key, "now": time.time()},
        )
        db.commit()
