"""
Create a user (e.g. first admin). Run from project root:
  python -m app.scripts.create_user USERNAME EMAIL PASSWORD [role]
  python -m app.scripts.create_user --bootstrap-admin USERNAME EMAIL PASSWORD
Example:
  python -m app.scripts.create_user --bootstrap-admin admin admin@corp.io your-secure-password
"""
import argparse
import logging
import sys

from app.core.config import AuthConfig, get_settings
from app.core.database import SessionLocal
from app.core.errors import AuthError
from app.core.security import PasswordHasher
from app.core.tokens import TokenCodec
from app.services.auth_service import AuthService
from app.services.user_directory import SqlUserDirectory

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create an Eventscope user from the command line.")
    parser.add_argument("username", help="Username (3-50 chars)")
    parser.add_argument("email", help="Email address")
    parser.add_argument("password", help="Password (6-128 chars)")
    parser.add_argument("role", nargs="?", default="user", choices=["user", "admin"])
    parser.add_argument(
        "--bootstrap-admin",
        action="store_true",
        help="Create the first admin; refused if an admin already exists.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = AuthConfig.from_settings(get_settings())

    db = SessionLocal()
    try:
        auth = AuthService(
            directory=SqlUserDirectory(db),
            codec=TokenCodec(config),
            hasher=PasswordHasher(config.bcrypt_rounds),
        )
        if args.bootstrap_admin:
            user = auth.bootstrap_admin(args.username, args.email, args.password)
        else:
            user = auth.register(args.username, args.email, args.password, role=args.role)
    except AuthError as e:
        print(e.message, file=sys.stderr)
        return 1
    finally:
        db.close()

    print(f"Created user '{user.username}' (id={user.id}) with role '{user.role}'.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
