import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from starlette.concurrency import run_in_threadpool

from .receipt_parser import parse_amount_from_ocr_text, validate_amount

logger = logging.getLogger(__name__)


def _write_scratch(directory: Path, content: bytes, suffix: str) -> str:
    directory.mkdir(parents=True, exist_ok=True)
    fd, path = tempfile.mkstemp(prefix="capture-", suffix=suffix, dir=directory)
    with os.fdopen(fd, "wb") as f:
        f.write(content)
    return path


def _remove(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


async def process_receipt(layer, user_id: str, content: bytes, ocr_text: Optional[str] = None,
                          total_amount=None, suffix: str = ".jpg") -> dict:
    """
    Capture workflow: store the photo encrypted and save the receipt record.

    The amount comes from `total_amount` when the user typed one, otherwise
    from the OCR text. If the photo cannot be encrypted the plain scratch
    copy is kept and referenced instead.
    """
    scratch = await run_in_threadpool(_write_scratch, layer.config.data_dir / "images", content, suffix)

    result = await layer.files.try_encrypt_file(scratch)
    if result.ok:
        image_uri = result.path
        await run_in_threadpool(_remove, scratch)
    else:
        logger.warning("Keeping unencrypted receipt image: %s", result.error)
        image_uri = scratch

    amount = total_amount
    if amount is None and ocr_text:
        parsed = parse_amount_from_ocr_text(ocr_text)
        amount = parsed if parsed is not None and validate_amount(parsed) else None

    receipt_id = await layer.data.receipts.create({
        "user_id": user_id,
        "image_uri": image_uri,
        "total_amount": amount,
        "ocr_data": ocr_text,
    })
    logger.info("Saved receipt %s (image encrypted: %s)", receipt_id, result.ok)
    return {"id": receipt_id, "image_uri": image_uri, "total_amount": amount, "encrypted": result.ok}
