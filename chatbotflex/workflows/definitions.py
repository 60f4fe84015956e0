# /chatbotflex/workflows/definitions.py

"""
Canned replies for legacy `menu` nodes.

Flows authored before condition nodes existed used numbered menus whose
choices were answered from this fixed table when the menu node had no
explicit `nextNode`. It is kept as pure data for compatibility and is not
meant to grow.

Each entry defines:
- message: The reply text
- stage: The stage the conversation moves to
- transfer: Whether the choice hands the conversation to a human
"""

from typing import Any, Dict

from chatbotflex.config import strings

CannedReply = Dict[str, Any]

LEGACY_MENU_REPLIES: Dict[str, CannedReply] = {
    "1": {
        "message": (
            "🕐 Horários de Funcionamento:\n\n"
            "Segunda a Sexta: 6h às 22h\n"
            "Sábado: 8h às 18h\n"
            "Domingo: 8h às 12h\n\n"
            "Como posso ajudar mais? Digite *menu* para voltar."
        ),
        "stage": "info_shown",
        "transfer": False,
    },
    "2": {
        "message": (
            "💰 Nossos Planos:\n\n"
            "📌 Mensal: R$ 99,90\n"
            "📌 Trimestral: R$ 249,90 (3x sem juros)\n"
            "📌 Semestral: R$ 449,90 (6x sem juros)\n"
            "📌 Anual: R$ 799,90 (12x sem juros)\n\n"
            "Todos os planos incluem acesso total às modalidades!\n\n"
            "Quer agendar uma aula experimental? Digite *sim*."
        ),
        "stage": "plans_shown",
        "transfer": False,
    },
    "3": {
        "message": (
            "🎯 Que ótimo! Vamos agendar sua aula experimental.\n\n"
            "Por favor, me informe seu nome completo:"
        ),
        "stage": "collecting_name",
        "transfer": False,
    },
    "4": {
        "message": strings.TRANSFER_DEFAULT,
        "stage": "transfer",
        "transfer": True,
    },
    "5": {
        "message": (
            "🏋️ Modalidades Disponíveis:\n\n"
            "• Musculação\n"
            "• Spinning\n"
            "• Yoga\n"
            "• Pilates\n"
            "• Funcional\n"
            "• Natação\n"
            "• Lutas (MMA, Boxe, Muay Thai)\n\n"
            "Digite *menu* para voltar ao menu principal."
        ),
        "stage": "info_shown",
        "transfer": False,
    },
}
