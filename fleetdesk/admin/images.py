# fleetdesk/admin/images.py
"""
Dispatch images uploaded by drivers.

Blobs are stored under ``dispatches/{dispatchId}/{driverId}/{ts}_{name}``
and indexed by a ``dispatch_image`` row.  Uploading fans out an
ImageUploaded event to the admin feed and the dispatch's customer.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass

from fleetdesk.admin.guard import delete_blob_quietly, empty_list, failed, neutral_on_error
from fleetdesk.core.dispatch.models import Dispatch, to_iso, utc_now
from fleetdesk.core.errors import NotFoundError, ValidationGapError
from fleetdesk.core.notifications.engine import FanOutEngine, FanOutResult
from fleetdesk.core.notifications.events import ImageUploaded
from fleetdesk.core.ports import DISPATCH_IMAGES, DISPATCHES, DRIVERS, BlobStore, DocumentStore
from fleetdesk.core.query import OrderBy, where
from fleetdesk.infra.logging_config import LogContext, get_logger
from fleetdesk.infra.metrics import inc_counter

logger = get_logger(__name__)

UNKNOWN_DRIVER = "Unknown Driver"
_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def storage_path(dispatch_id: str, driver_id: str, file_name: str, now_ms: int | None = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    safe = _UNSAFE_NAME.sub("_", file_name).strip("._") or "image"
    return f"dispatches/{dispatch_id}/{driver_id}/{now_ms}_{safe}"


def group_images_by_driver(images: list[dict], drivers: list[dict]) -> list[dict]:
    """``[{"driver": {...}, "images": [...]}, ...]`` in first-seen order."""
    by_id = {d.get("id"): d for d in drivers}
    groups: dict[str, dict] = {}
    for image in images:
        driver_id = image.get("driverId")
        if driver_id not in groups:
            driver = by_id.get(driver_id) or {"id": driver_id, "name": UNKNOWN_DRIVER}
            groups[driver_id] = {"driver": driver, "images": []}
        groups[driver_id]["images"].append(image)
    return list(groups.values())


@dataclass
class UploadResult:
    image: dict
    notifications: FanOutResult

    def to_dict(self) -> dict:
        return {"image": self.image, "notifications": self.notifications.to_dict()}


class DispatchImageService:

    def __init__(self, store: DocumentStore, blobs: BlobStore, engine: FanOutEngine):
        self._store = store
        self._blobs = blobs
        self._engine = engine

    async def upload(
            self,
            dispatch_id: str,
            driver_id: str,
            file_name: str,
            data: bytes,
            *,
            content_type: str = "image/jpeg",
            image_type: str = "trip",
            notes: str | None = None,
    ) -> UploadResult:
        """
        Store the image, index it and notify.

        Raises:
            ValidationGapError: empty upload or missing ids.
            NotFoundError: the dispatch does not exist.
        """
        if not data:
            raise ValidationGapError("Image upload is empty")
        if not dispatch_id or not driver_id:
            raise ValidationGapError("dispatchId and driverId are required")

        doc = await self._store.get_record(DISPATCHES, dispatch_id)
        if doc is None:
            raise NotFoundError(f"Dispatch '{dispatch_id}' not found")
        dispatch = Dispatch.from_document(doc)

        path = storage_path(dispatch_id, driver_id, file_name)
        url = await self._blobs.upload(path, data, content_type)

        image = {
            "dispatchId": dispatch_id,
            "driverId": driver_id,
            "imageUrl": url,
            "fileName": path.rsplit("/", 1)[-1],
            "imageType": image_type,
            "description": notes or "",
            "uploadedAt": to_iso(utc_now()),
            "storagePath": path,
        }
        image_id = await self._store.add_record(DISPATCH_IMAGES, image)
        image["id"] = image_id
        inc_counter("dispatch_images_uploaded_total", image_type=image_type)
        LogContext(logger, dispatch_id=dispatch_id).info(f"Image {image_id} uploaded by {driver_id}")

        assignment = dispatch.assignment_for(driver_id)
        result = await self._engine.dispatch_event(ImageUploaded(
            dispatch_id=dispatch_id,
            driver_id=driver_id,
            image_type=image_type,
            image_url=url,
            pickup=dispatch.pickup,
            dropoff=dispatch.dropoff,
            customer_id=dispatch.customer_id,
            driver_name=assignment.driver_name if assignment else None,
            notes=notes,
        ))
        return UploadResult(image=image, notifications=result)

    @neutral_on_error(empty_list)
    async def list_for_dispatch(self, dispatch_id: str) -> list[dict]:
        return await self._store.query_records(
            DISPATCH_IMAGES,
            [where("dispatchId", "==", dispatch_id)],
            order_by=OrderBy("uploadedAt", descending=True),
        )

    @neutral_on_error(empty_list)
    async def list_for_driver(self, dispatch_id: str, driver_id: str) -> list[dict]:
        return await self._store.query_records(
            DISPATCH_IMAGES,
            [where("dispatchId", "==", dispatch_id), where("driverId", "==", driver_id)],
            order_by=OrderBy("uploadedAt", descending=True),
        )

    @neutral_on_error(empty_list)
    async def grouped_by_driver(self, dispatch_id: str) -> list[dict]:
        images = await self.list_for_dispatch(dispatch_id)
        drivers = await self._store.query_records(DRIVERS)
        return group_images_by_driver(images, drivers)

    @neutral_on_error(failed)
    async def delete(self, image_id: str) -> bool:
        """Remove the index row, then the blob (best-effort)."""
        image = await self._store.get_record(DISPATCH_IMAGES, image_id)
        if image is None:
            return False
        await self._store.delete_record(DISPATCH_IMAGES, image_id)
        target = image.get("storagePath") or image.get("imageUrl")
        if target:
            await delete_blob_quietly(self._blobs, target)
        return True
