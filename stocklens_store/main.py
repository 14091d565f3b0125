import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel

from .config import Config
from .container import DataLayer
from .errors import KeyStoreError, MarketDataError, StorageError
from .services.market_cache import Granularity
from .services.orchestrator import process_receipt
from .services.projection import project_with_historical_cagr

logger = logging.getLogger(__name__)


class ReceiptUpdate(BaseModel):
    image_uri: Optional[str] = None
    total_amount: Optional[float] = None
    ocr_data: Optional[str] = None
    synced: Optional[int] = None


class UserUpsert(BaseModel):
    email: str
    full_name: Optional[str] = None


class SettingsUpdate(BaseModel):
    theme: Optional[str] = None
    auto_backup: Optional[int] = None


def _storage_error(e: StorageError) -> HTTPException:
    if "UNIQUE constraint failed" in str(e):
        return HTTPException(status_code=409, detail="Record already exists")
    logger.error("Storage error: %s", e)
    return HTTPException(status_code=500, detail="Storage error")


def create_app(config: Config = None, layer_factory=None) -> FastAPI:
    config = config or Config.from_env()
    logging.basicConfig(level=config.log_level, format="%(asctime)s %(levelname)s [%(name)s]: %(message)s")
    layer_factory = layer_factory or DataLayer

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 LIFESPAN: Starting data layer...")
        layer = layer_factory(config)
        try:
            await layer.start()
        except StorageError as e:
            logger.error("❌ LIFESPAN: Database initialization failed: %s", e)
            await layer.close()
            raise
        logger.info("✅ LIFESPAN: Database tables created/verified.")
        app.state.layer = layer
        yield
        await layer.close()

    app = FastAPI(lifespan=lifespan)

    def get_layer(request: Request) -> DataLayer:
        return request.app.state.layer

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/receipts")
    async def upload_receipt(
        request: Request,
        file: UploadFile = File(...),
        user_id: str = Form(...),
        ocr_text: Optional[str] = Form(None),
        total_amount: Optional[float] = Form(None),
    ):
        layer = get_layer(request)
        content = await file.read()
        try:
            result = await process_receipt(layer, user_id, content, ocr_text=ocr_text, total_amount=total_amount)
        except StorageError as e:
            raise _storage_error(e)
        except KeyStoreError as e:
            logger.error("Key store failure while saving receipt: %s", e)
            raise HTTPException(status_code=500, detail="Encryption key unavailable")
        return {"status": "success", "data": result}

    @app.get("/users/{user_id}/receipts")
    async def list_receipts(user_id: str, request: Request):
        receipts = await get_layer(request).data.receipts.get_by_user_id(user_id)
        return [r.to_dict() for r in receipts]

    @app.get("/receipts/{receipt_id}")
    async def get_receipt(receipt_id: int, request: Request):
        receipt = await get_layer(request).data.receipts.get_by_id(receipt_id)
        if receipt is None:
            raise HTTPException(status_code=404, detail="Receipt not found")
        return receipt.to_dict()

    @app.get("/receipts/{receipt_id}/image")
    async def get_receipt_image(receipt_id: int, request: Request):
        layer = get_layer(request)
        receipt = await layer.data.receipts.get_by_id(receipt_id)
        if receipt is None or not receipt.image_uri:
            raise HTTPException(status_code=404, detail="Receipt image not found")
        return {"path": await layer.files.decrypt_to_temp(receipt.image_uri)}

    @app.patch("/receipts/{receipt_id}")
    async def update_receipt(receipt_id: int, body: ReceiptUpdate, request: Request):
        layer = get_layer(request)
        if await layer.data.receipts.get_by_id(receipt_id) is None:
            raise HTTPException(status_code=404, detail="Receipt not found")
        try:
            await layer.data.receipts.update(receipt_id, body.model_dump(exclude_unset=True))
        except StorageError as e:
            raise _storage_error(e)
        return {"status": "updated"}

    @app.delete("/receipts/{receipt_id}")
    async def delete_receipt(receipt_id: int, request: Request):
        await get_layer(request).data.receipts.delete(receipt_id)
        return {"status": "deleted"}

    @app.delete("/users/{user_id}/receipts")
    async def clear_receipts(user_id: str, request: Request):
        await get_layer(request).data.receipts.delete_all(user_id)
        return {"status": "cleared"}

    @app.put("/users/{uid}")
    async def upsert_user(uid: str, body: UserUpsert, request: Request):
        try:
            user_id = await get_layer(request).data.users.upsert(uid, body.full_name, body.email)
        except StorageError as e:
            raise _storage_error(e)
        return {"id": user_id}

    @app.get("/users/{user_id}/settings")
    async def get_settings(user_id: str, request: Request):
        settings = await get_layer(request).data.settings.get_by_user_id(user_id)
        if settings is None:
            raise HTTPException(status_code=404, detail="Settings not found")
        return settings.to_dict()

    @app.put("/users/{user_id}/settings")
    async def put_settings(user_id: str, body: SettingsUpdate, request: Request):
        await get_layer(request).data.settings.upsert(dict(body.model_dump(), user_id=user_id))
        return {"status": "saved"}

    @app.get("/market/{symbol}/{granularity}")
    async def market_series(symbol: str, granularity: Granularity, request: Request):
        try:
            series = await get_layer(request).market.get_series(symbol, granularity)
        except MarketDataError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return [p.to_dict() for p in series]

    @app.get("/projection/{symbol}")
    async def projection(symbol: str, amount: float, request: Request, years: int = 5):
        return await project_with_historical_cagr(get_layer(request).market, amount, symbol, years)

    return app
