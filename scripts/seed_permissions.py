"""
Seed script to give clinics their starting permission documents.

Each clinic passed on the command line gets a document granting ``all`` on
every catalog module and sub-module. Clinics that already have a document are
left alone, so the script can be re-run safely.

Usage:
    uv run python -m scripts.seed_permissions <clinic_id> [<clinic_id> ...]
"""
import asyncio
import sys
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.permissions.catalog import DEFAULT_CATALOG
from app.features.permissions.dependencies import get_permission_document, save_matrix
from app.features.permissions.editor import full_access_matrix
from app.utils import get_logger


log = get_logger(__name__)


async def seed_clinic(db: AsyncSession, clinic_id: str) -> bool:
    """
    Create the full-access document of a clinic.

    Returns:
        True if a document was created, False if one already existed
    """
    existing = await get_permission_document(db, "clinic", clinic_id)
    if existing:
        log.debug(f"Clinic '{clinic_id}' already has permissions (version {existing.version}), skipping")
        return False

    await save_matrix(db, "clinic", clinic_id, full_access_matrix(DEFAULT_CATALOG), expected_version=0)
    log.info(f"Created full-access permissions for clinic '{clinic_id}'")
    return True


async def main(clinic_ids: list[str]):
    """Main function to seed clinic permission documents."""
    log.info("Starting permission seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            created = 0
            for clinic_id in clinic_ids:
                if await seed_clinic(db, clinic_id):
                    created += 1
            log.info(f"Permission seeding completed: {created} created, {len(clinic_ids) - created} skipped")
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(sys.argv[1:]))
