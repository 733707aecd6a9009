"""
Script para criar os usuários padrão do sistema (um por nível de acesso).
Usuários existentes não são alterados.

Senhas: use SEED_PASSWORD para definir uma senha comum; caso contrário uma
senha aleatória é gerada para cada usuário e exibida uma única vez.
"""
import sys
import os
import secrets

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception as e:
    print(f"WARNING: Could not load .env file: {e}")

# Check database type before importing
database_url = os.getenv("DATABASE_URL", "sqlite:///./var/dev.db")

if database_url.startswith("postgresql"):
    try:
        import psycopg2
    except ImportError:
        print("ERROR: PostgreSQL database detected but psycopg2 is not installed.")
        sys.exit(1)

try:
    from ftth_tracker.db import Base, SessionLocal, engine
    from ftth_tracker.models.models import User
    from ftth_tracker.auth.security import get_password_hash
except ImportError as e:
    print(f"ERROR: Failed to import database components: {e}")
    sys.exit(1)


DEFAULT_USERS = [
    {"username": "admin", "full_name": "Administrador", "access_level": "ADMIN", "email": "admin@example.com"},
    {"username": "tecnico", "full_name": "Gestor de Técnicos", "access_level": "TECH_MANAGER", "email": "tecnico@example.com"},
    {"username": "manutencao", "full_name": "Gestor de Manutenção", "access_level": "MAINTENANCE_MANAGER", "email": "manutencao@example.com"},
    {"username": "usuario", "full_name": "Usuário Padrão", "access_level": "USER", "email": "user@example.com"},
    {"username": "visualizador", "full_name": "Visualizador", "access_level": "VIEWER", "email": "viewer@example.com"},
]


def seed_users():
    """Create the default users that don't exist yet"""
    if database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)

    shared_password = os.getenv("SEED_PASSWORD")
    db = SessionLocal()

    try:
        created = 0
        for data in DEFAULT_USERS:
            existing = db.query(User).filter(
                (User.username == data["username"]) | (User.email == data["email"])
            ).first()
            if existing:
                print(f"User '{data['username']}' already exists, skipping")
                continue

            password = shared_password or secrets.token_urlsafe(12)
            db.add(User(password_hash=get_password_hash(password), **data))
            created += 1
            if shared_password:
                print(f"Created user: {data['username']} ({data['access_level']})")
            else:
                print(f"Created user: {data['username']} ({data['access_level']}) password: {password}")

        db.commit()
        print(f"\nSuccessfully seeded users!")
        print(f"Created: {created} / {len(DEFAULT_USERS)}")

    except Exception as e:
        db.rollback()
        print(f"Error seeding users: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_users()
