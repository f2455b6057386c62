"""Signal handlers for files app."""

import logging
from functools import partial

from django.db import transaction
from django.db.models.signals import post_delete
from django.dispatch import receiver

from server.apps.files.infrastructure.gateway import get_gateway
from server.apps.files.models import File, FileStatus

logger = logging.getLogger(__name__)


@receiver(post_delete, sender=File)
def delete_file_from_storage(
    sender: type[File],
    instance: File,
    **kwargs: object,
) -> None:
    """Delete the stored object when a File record is deleted.

    Covers deletes from the logic layer, the admin, cascades and bulk
    queryset deletes alike. Removal runs only after the surrounding
    transaction commits, and a storage failure is logged rather than
    raised: the DB delete already succeeded.

    Args:
        sender: The File model class.
        instance: The File instance being deleted.
        **kwargs: Additional signal arguments.
    """
    if instance.status != FileStatus.VALIDATED or not instance.object_key:
        # Nothing was ever confirmed in storage
        return

    logger.info(
        'Scheduling storage cleanup after DB delete: %s',
        instance.object_key,
    )
    transaction.on_commit(partial(get_gateway().discard, instance.object_key))
