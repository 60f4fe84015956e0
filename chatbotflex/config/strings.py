# /chatbotflex/config/strings.py

# This file contains all user-facing bot strings, making them easy to manage,
# update, and eventually localize without changing the flow engine.

# Fallbacks
CONFIG_ERROR = "Desculpe, algo deu errado por aqui. Por favor, tente novamente em instantes."
DEFAULT_APOLOGY = "Desculpe, ocorreu um erro. Por favor, tente novamente."
NOT_UNDERSTOOD = "Desculpe, não entendi. Digite *menu* para ver as opções."

# Hand-off
TRANSFER_DEFAULT = "Transferindo você para um atendente. Aguarde um momento..."

# Input capture
INPUT_PROMPT_DEFAULT = "Por favor, digite sua resposta:"
INPUT_PROMPT_LABEL = "Por favor, informe {label}:"
INPUT_THANKS = "Obrigado pela informação!"
INVALID_INPUT = {
    "email": "Hmm, esse e-mail não parece válido. Por favor, digite um e-mail no formato nome@exemplo.com:",
    "phone": "Hmm, esse telefone não parece válido. Por favor, digite o número com DDD (apenas números):",
    "number": "Por favor, digite apenas números:",
    "text": "Não recebi sua resposta. Por favor, digite novamente:",
}

# Choices
CHOOSE_OPTION = "Escolha uma das opções:"
INVALID_OPTION = "Opção inválida. Por favor, escolha uma das opções disponíveis:"
INVALID_MENU_OPTION = "Opção inválida. Digite *menu* para ver as opções."
MISCONFIGURED_OPTION = "Desculpe, essa opção ainda não está configurada. Por favor, escolha outra opção."

# Inactivity
AUTO_CLOSE_WARNING = (
    "Atenção: este atendimento será encerrado automaticamente em {minutes} minutos por inatividade. "
    "Se ainda precisar de ajuda, é só responder esta mensagem."
)
AUTO_CLOSED = "Este atendimento foi encerrado por inatividade. Se precisar de algo, é só mandar uma nova mensagem."
