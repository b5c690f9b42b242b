import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.modulekit.models import Permission, Role, User
from scripts._db_utils import script_session

PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("admin.view", "Admin: view shell"),
    # Loyalty
    ("loyalty.view", "Loyalty: view members"),
    ("loyalty.earn", "Loyalty: award points"),
    ("loyalty.adjust", "Loyalty: manual adjustments"),
    ("loyalty.manage", "Loyalty: manage rewards"),
    # Wallet / payouts
    ("wallet.credit", "Wallet: credit earnings"),
    # Assembler + queue
    ("assembler.run", "Assembler: generate projects"),
    ("queue.view", "Queue: view jobs"),
    # AI assist
    ("ai_assist.use", "AI Assist: analyze and patch files"),
    # Restaurant
    ("menu.edit", "Menu: edit"),
    ("reservations.manage", "Reservations: manage"),
)

STAFF_PERMISSIONS = ("loyalty.view", "loyalty.earn", "menu.edit", "reservations.manage")


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@modulekit.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///modulekit.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        perms: dict[str, Permission] = {}
        for key, name in PERMISSIONS:
            p = s.query(Permission).filter(Permission.key == key).one_or_none()
            if not p:
                p = Permission(key=key, name=name)
                s.add(p)
            perms[key] = p

        def ensure_role(key: str, name: str, keys) -> Role:
            role = s.query(Role).filter(Role.key == key).one_or_none()
            if not role:
                role = Role(key=key, name=name)
                s.add(role)
            for k in keys:
                if perms[k] not in role.permissions:
                    role.permissions.append(perms[k])
            return role

        role_admin = ensure_role("admin", "Administrator", [k for k, _ in PERMISSIONS])
        ensure_role("staff", "Staff", STAFF_PERMISSIONS)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), is_active=True)
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
