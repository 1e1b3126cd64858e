import logging
import urllib.parse
from typing import Optional

import google.generativeai as genai

from workshop.config import GEMINI_MODEL, GOOGLE_API_KEY, WHATSAPP_COUNTRY_CODE
from workshop.errors import AssistantUnavailable, InvalidInputError

logger = logging.getLogger(__name__)


class WorkOrderAssistant:
    """Gera a mensagem para o cliente a partir do que foi feito na OT."""

    def __init__(self, model):
        self.model = model

    def build_prompt(self, order: dict) -> str:
        items = "".join(f"- {p['name']} (x{p['quantity']})\n" for p in order["parts_used"])
        items += "".join(f"- {s['name']} (serviço)\n" for s in order["services_performed"])
        notes = "".join(f"- {n['text']}\n" for n in order["diagnostic_notes"])
        total = order["parts_total"] + order["services_total"]
        return f"""
    Atue como um mecânico chefe honesto e profissional.
    Escreva uma mensagem curta para WhatsApp, em espanhol, para o cliente {order['client_name']}
    (Veículo placa {order['vehicle_plate']}).

    LISTA REAL DE PEÇAS/SERVIÇOS REALIZADOS (USE APENAS ESTES):
    {items}
    Diagnóstico registrado:
    {notes or '- (sem notas)'}

    Valor de referência (sem impostos): ₡ {total:.2f}

    Instruções RÍGIDAS:
    1. Cite APENAS os itens listados acima. NÃO INVENTE NENHUM OUTRO SERVIÇO.
    2. Se a lista for pequena, seja breve.
    3. Explique a importância técnica do que foi feito.
    4. Seja cordial. Sem markdown.
    """

    def customer_message(self, order: dict) -> str:
        if not order["parts_used"] and not order["services_performed"]:
            raise InvalidInputError("Adicione peças ou serviços à OT antes de gerar a mensagem.")
        try:
            response = self.model.generate_content(self.build_prompt(order))
            return response.text
        except Exception as e:
            logger.exception("Falha ao gerar mensagem da OT %s", order["code"])
            raise AssistantUnavailable(f"Erro IA: {e}") from e


def whatsapp_link(phone: Optional[str], message: str) -> Optional[str]:
    if not phone:
        return None
    digits = "".join(ch for ch in phone if ch.isdigit())
    return f"https://wa.me/{WHATSAPP_COUNTRY_CODE}{digits}?text={urllib.parse.quote(message)}"


def get_assistant() -> WorkOrderAssistant:
    if not GOOGLE_API_KEY:
        logger.warning("GOOGLE_API_KEY não encontrada no arquivo .env")
        raise AssistantUnavailable("Assistente de IA não configurado")
    genai.configure(api_key=GOOGLE_API_KEY)
    # Mantendo gemini-flash-latest como padrão
    return WorkOrderAssistant(genai.GenerativeModel(GEMINI_MODEL))
