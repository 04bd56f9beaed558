"""initial academy schema

Catalog, carts, orders, payments, enrollments, secure links and the fulfillment queue,
created from the SQLModel metadata at this revision.

"""
from typing import Sequence, Union

from alembic import op
from sqlmodel import SQLModel

import app.models  # noqa: F401


revision: str = "0001_initial_models"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # checkfirst: databases bootstrapped by init_db() already have these tables
    SQLModel.metadata.create_all(op.get_bind(), checkfirst=True)


def downgrade() -> None:
    SQLModel.metadata.drop_all(op.get_bind())
