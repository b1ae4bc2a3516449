"""
BlindAid Backend Server
- Emergency: Pi button/photo over REST, relayed to Telegram and the app
- Talk Mode: Pi uploads an image pair, the app asks by voice, Gemini answers once
Socket.IO for app interaction, FastAPI for device REST calls.
"""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import socketio
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from errors import ImageStorageError, IncompleteUploadBatch, InvalidSessionId
from gemini_service import DEFAULT_MODEL, GeminiReasoningGateway
from image_store import ImageLandingStore
from query_classifier import KeywordClassifier, always_visual_context
from talk_session import DEFAULT_SESSION_ID, TalkConfig, TalkEvent, TalkSessionController
from telegram_service import TelegramRelay, maps_link, notify_contacts, parse_contacts

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

PORT = int(os.getenv('PORT', '3000'))
GEMINI_MODEL = os.getenv('GEMINI_MODEL', DEFAULT_MODEL)
GEMINI_TIMEOUT_SECONDS = float(os.getenv('GEMINI_TIMEOUT_SECONDS', '20'))
TALK_IMAGE_DIR = Path(os.getenv('TALK_IMAGE_DIR', './temp'))
UPLOAD_DIR = Path(os.getenv('UPLOAD_DIR', './uploads'))
TALK_CLASSIFIER = os.getenv('TALK_CLASSIFIER', 'keyword').lower()
TALK_SESSION_TTL_SECONDS = float(os.getenv('TALK_SESSION_TTL_SECONDS', '3600'))
EMERGENCY_CONTACTS = parse_contacts(os.getenv('EMERGENCY_CONTACTS'))

# Global talk controller (built at startup, tests may pre-assign one)
controller: Optional[TalkSessionController] = None

# Global Telegram relay
telegram = TelegramRelay()

# Process-wide emergency flag (emergency path only, talk state is per session)
emergency_active = False


class TalkQueryBody(BaseModel):
    text: str = ""
    device_id: str = DEFAULT_SESSION_ID


class TalkStartBody(BaseModel):
    device_id: str = DEFAULT_SESSION_ID


def _now_local() -> str:
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S')


async def emit_talk_event(event: TalkEvent):
    """Route controller events: replies to the asker, everything else to the device room."""
    room = event.caller_id or event.session_id
    await sio.emit(event.name, event.payload, room=room)


def build_controller() -> TalkSessionController:
    """Wire the talk-mode components from environment configuration."""
    gateway = GeminiReasoningGateway(model=GEMINI_MODEL, timeout_seconds=GEMINI_TIMEOUT_SECONDS)
    if TALK_CLASSIFIER == 'always_visual':
        classifier = always_visual_context
    else:
        classifier = KeywordClassifier()
    return TalkSessionController(
        store=ImageLandingStore(TALK_IMAGE_DIR),
        gateway=gateway,
        classifier=classifier,
        emit=emit_talk_event,
        config=TalkConfig(session_ttl_seconds=TALK_SESSION_TTL_SECONDS),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global controller
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    if controller is None:
        try:
            logger.info("🤖 Initializing talk mode...")
            controller = build_controller()
            logger.info(f"✓ Talk mode ready (model={GEMINI_MODEL}, classifier={TALK_CLASSIFIER})")
        except Exception as e:
            logger.error(f"✗ Talk mode initialization failed: {e}")
    yield
    logger.info("🛑 Shutting down server...")


app = FastAPI(title="BlindAid Backend", lifespan=lifespan)
sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins='*')
socket_app = socketio.ASGIApp(socketio_server=sio, other_asgi_app=app)


def _talk_unavailable() -> JSONResponse:
    return JSONResponse(status_code=503, content={"ok": False, "error": "talk_mode_unavailable"})


@app.get("/health")
async def health():
    return {
        "ok": True,
        "talk_mode": controller is not None,
        "emergency_active": emergency_active,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# ============================================================================
# EMERGENCY (PI)
# ============================================================================

@app.post("/emergency")
async def emergency():
    global emergency_active
    emergency_active = True
    logger.info("🚨 Emergency button pressed")

    await telegram.send_message(f"🚨 EMERGENCY ALERT\nButton pressed on Raspberry Pi\n⏰ {_now_local()}")
    await sio.emit('emergency:triggered', {'active': True})
    return {"ok": True}


@app.post("/photo")
async def emergency_photo(photo: UploadFile = File(...)):
    try:
        UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        path = UPLOAD_DIR / f"{uuid.uuid4().hex}.jpg"
        path.write_bytes(await photo.read())
    except OSError as e:
        logger.error(f"❌ Could not save emergency photo: {e}")
        return JSONResponse(status_code=500, content={"ok": False})

    logger.info(f"📸 Emergency photo saved: {path}")
    await telegram.send_photo(path, "📸 Emergency Photo")
    return {"ok": True}


# ============================================================================
# TALK MODE (PI + APP)
# ============================================================================

@app.post("/talk/images")
async def talk_images(
    previous: Optional[UploadFile] = File(None),
    current: Optional[UploadFile] = File(None),
    last: Optional[UploadFile] = File(None),
    live: Optional[UploadFile] = File(None),
    device_id: str = Form(DEFAULT_SESSION_ID)
):
    """Accept one previous/current image pair. The Pi's field names last/live also work."""
    if controller is None:
        return _talk_unavailable()

    previous_file = previous or last
    current_file = current or live
    previous_bytes = await previous_file.read() if previous_file else None
    current_bytes = await current_file.read() if current_file else None

    try:
        await controller.upload_batch(device_id, previous_bytes, current_bytes)
    except IncompleteUploadBatch as e:
        return JSONResponse(status_code=400, content={
            "ok": False, "error": "incomplete_upload_batch", "missing": e.missing
        })
    except InvalidSessionId:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid_device_id"})
    except ImageStorageError:
        return JSONResponse(status_code=500, content={"ok": False, "error": "storage_failure"})

    return {"ok": True, "ready": True}


@app.post("/talk/query")
async def talk_query(body: TalkQueryBody):
    if controller is None:
        return _talk_unavailable()
    try:
        reply = await controller.query(body.text, session_id=body.device_id)
    except InvalidSessionId:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid_device_id"})
    return {"ok": True, "reply": reply.text}


@app.post("/talk/start")
async def talk_start(body: TalkStartBody):
    if controller is None:
        return _talk_unavailable()
    try:
        await controller.start_capture(body.device_id)
    except InvalidSessionId:
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid_device_id"})
    return {"ok": True}


# ============================================================================
# WEBSOCKET EVENT HANDLERS
# ============================================================================

def _payload(data) -> dict:
    # Clients may send a bare string or nothing at all
    return data if isinstance(data, dict) else {}


async def _device_id(sid) -> str:
    session = await sio.get_session(sid)
    return session.get('device_id', DEFAULT_SESSION_ID)


@sio.event
async def connect(sid, environ, auth=None):
    device_id = _payload(auth).get('device_id') or DEFAULT_SESSION_ID
    await sio.save_session(sid, {'device_id': device_id})
    await sio.enter_room(sid, device_id)
    logger.info(f"📡 App connected: {sid} (device {device_id})")


@sio.event
async def disconnect(sid, reason=None):
    logger.info(f"✗ App disconnected: {sid}")


@sio.on('emergency:check')
async def emergency_check(sid, data=None):
    await sio.emit('emergency:status', {'active': emergency_active}, room=sid)


@sio.on('emergency:location')
async def emergency_location(sid, data):
    data = _payload(data)
    lat = data.get('lat')
    lon = data.get('lon')
    if lat is None or lon is None:
        logger.warning(f"⚠️ Location event without coordinates from {sid}")
        return

    now = _now_local()
    await telegram.send_message(f"📍 EMERGENCY LOCATION\n{maps_link(lat, lon)}\n⏰ {now}")
    notify_contacts(EMERGENCY_CONTACTS, await _device_id(sid), lat, lon, now)


@sio.on('talk:userinput')
async def talk_userinput(sid, data):
    if controller is None:
        await sio.emit('error', {'message': 'Talk mode not available'}, room=sid)
        return
    text = _payload(data).get('text')
    if not isinstance(text, str):
        text = None
    try:
        await controller.query(text, session_id=await _device_id(sid), caller_id=sid)
    except InvalidSessionId:
        await sio.emit('error', {'message': 'Invalid device id'}, room=sid)


@sio.on('talk:start')
async def talk_start_event(sid, data=None):
    if controller is None:
        await sio.emit('error', {'message': 'Talk mode not available'}, room=sid)
        return
    try:
        await controller.start_capture(await _device_id(sid))
    except InvalidSessionId:
        await sio.emit('error', {'message': 'Invalid device id'}, room=sid)


if __name__ == "__main__":
    logger.info(f"🚀 BlindAid backend running on port {PORT}")
    uvicorn.run(socket_app, host="0.0.0.0", port=PORT, log_level="info")
