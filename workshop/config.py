import os
from dotenv import load_dotenv

# Carrega variáveis de ambiente do arquivo .env
load_dotenv()

# Banco de dados (SQLite local por padrão)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///oficina.db")

# Configuração da API do Gemini (mensagem ao cliente da OT)
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-flash-latest")

# Prefixo internacional usado no link do WhatsApp (Costa Rica)
WHATSAPP_COUNTRY_CODE = os.getenv("WHATSAPP_COUNTRY_CODE", "506")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
