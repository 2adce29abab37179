"""
Credential rotation propagation.

After a password rotation succeeds on the engine, every app install that
connects with that password must have its stored copy rewritten. Rewrites
are sequential and committed one by one; the first failure stops the run and
reports which installs were already updated.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from .. import ORIGIN_LOCAL
from .encryption import SecretBox
from .errors import InvalidParamsError, PartialFailureError
from .repositories import AppInstallRepo, AppInstallResourceRepo

logger = logging.getLogger("uvicorn.error")

USER_PASSWORD_FIELD = "user-password"
ROOT_PASSWORD_FIELD = "password"

# App install env keys holding each credential
ENV_KEYS = {
    USER_PASSWORD_FIELD: "PANEL_DB_USER_PASSWORD",
    ROOT_PASSWORD_FIELD: "PANEL_DB_ROOT_PASSWORD",
}


class CredentialPropagator:
    """Rewrites the credentials stored by app installs linked to a database."""

    def __init__(self, db: AsyncSession, secret_box: SecretBox):
        self.db = db
        self.secret_box = secret_box

    async def find_linked_installs(
        self,
        resource_id: int,
        origin: str,
        engine_type: str,
        engine_name: str,
    ) -> list[dict]:
        """
        App installs using a logical database, in link insertion order.

        Local databases are scoped to links made through the engine's own app
        install; remote ones match on the resource alone. Links whose install
        has since been removed are skipped.
        """
        link_id = None
        if origin == ORIGIN_LOCAL:
            engine_app = await AppInstallRepo.load_base_info(self.db, engine_type, engine_name)
            link_id = engine_app["id"]

        installs = []
        for resource in await AppInstallResourceRepo.get_by(self.db, resource_id, link_id=link_id):
            install = await AppInstallRepo.get(self.db, id=resource["app_install_id"])
            if not install:
                logger.warning(
                    f"App install {resource['app_install_id']} linked to database {resource_id} no longer exists"
                )
                continue
            installs.append(install)
        return installs

    async def propagate(self, installs: list[dict], field: str, password: str) -> list[str]:
        """
        Store a new password on each install, committing after every rewrite.

        Args:
            installs: App install rows, rewritten in the given order
            field: "user-password" for database users, "password" for the engine admin
            password: New password in plain text

        Returns:
            Names of the rewritten installs.

        Raises:
            PartialFailureError: If a rewrite fails; ``applied`` lists the
                installs updated before the failure.
        """
        if field not in ENV_KEYS:
            raise InvalidParamsError(f"Unknown credential field '{field}'")

        applied: list[str] = []
        for install in installs:
            logger.info(f"Updating {field} used by app {install['app_key']}-{install['name']}")
            try:
                encrypted = self.secret_box.encrypt(password)
                await AppInstallRepo.update_env(self.db, install["id"], {ENV_KEYS[field]: encrypted})
                if field == ROOT_PASSWORD_FIELD:
                    await AppInstallRepo.update(self.db, install["id"], {"password": encrypted})
                await self.db.commit()
            except Exception as e:
                await self.db.rollback()
                logger.error(f"Failed to update {field} of app {install['name']}: {e}")
                raise PartialFailureError(
                    f"Password changed on the engine but app '{install['name']}' still uses the old one: {e}",
                    applied=applied,
                ) from e
            applied.append(install["name"])
        return applied
