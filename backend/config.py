"""
Configuration et utilitaires partagés
"""

import os
import uuid
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'rfp_crm')

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Generated documents
MAX_DOCUMENT_VERSIONS = int(os.environ.get('MAX_DOCUMENT_VERSIONS', '10'))

# Refuse regeneration of AWARDED / LOST / CANCELLED RFPs when enabled
RFP_LOCK_CLOSED_STATUSES = os.environ.get('RFP_LOCK_CLOSED_STATUSES', '0') == '1'

# Blob storage (BunnyCDN when configured, local disk otherwise)
BUNNY_STORAGE_ZONE = os.environ.get('BUNNY_STORAGE_ZONE', '')
BUNNY_API_KEY = os.environ.get('BUNNY_API_KEY', '')
BUNNY_STORAGE_HOST = os.environ.get('BUNNY_STORAGE_HOST', 'storage.bunnycdn.com')
BUNNY_CDN_URL = os.environ.get('BUNNY_CDN_URL', '').rstrip('/')
LOCAL_STORAGE_DIR = Path(os.environ.get('LOCAL_STORAGE_DIR', str(ROOT_DIR / 'static' / 'generated')))
LOCAL_STORAGE_URL = os.environ.get('LOCAL_STORAGE_URL', '/static/generated').rstrip('/')
UPLOAD_TIMEOUT_SECONDS = float(os.environ.get('UPLOAD_TIMEOUT_SECONDS', '60'))

# SoftOne ERP
SOFTONE_BASE_URL = os.environ.get('SOFTONE_BASE_URL', '').rstrip('/')
SOFTONE_USERNAME = os.environ.get('SOFTONE_USERNAME', '')
SOFTONE_PASSWORD = os.environ.get('SOFTONE_PASSWORD', '')
SOFTONE_COMPANY = os.environ.get('SOFTONE_COMPANY', '')
ERP_TIMEOUT_SECONDS = float(os.environ.get('ERP_TIMEOUT_SECONDS', '15'))

# DeepSeek (translations, code lookup)
DEEPSEEK_API_KEY = os.environ.get('DEEPSEEK_API_KEY', '')
DEEPSEEK_API_URL = os.environ.get('DEEPSEEK_API_URL', 'https://api.deepseek.com/v1/chat/completions')
DEEPSEEK_MODEL = os.environ.get('DEEPSEEK_MODEL', 'deepseek-chat')
AI_TIMEOUT_SECONDS = float(os.environ.get('AI_TIMEOUT_SECONDS', '45'))
AI_REQUEST_DELAY_SECONDS = float(os.environ.get('AI_REQUEST_DELAY_SECONDS', '0.5'))

COMPANY_NAME = os.environ.get('COMPANY_NAME', 'RFP CRM')


# ==================== HELPERS ====================

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    """Identifiant de document (uuid4)"""
    return str(uuid.uuid4())
