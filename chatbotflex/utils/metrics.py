# /chatbotflex/utils/metrics.py

from prometheus_client import Counter, Histogram

# All Prometheus metrics live here so they are registered exactly once.

# Messaging
inbound_messages_counter = Counter('chat_inbound_messages_total', 'Inbound chat messages', ['channel', 'status'])
outbound_messages_counter = Counter('chat_outbound_messages_total', 'Outbound chat messages', ['channel', 'status'])

# Bot flow
flow_turns_counter = Counter('bot_flow_turns_total', 'Bot flow turns by outcome', ['outcome'])
handoffs_counter = Counter('bot_handoffs_total', 'Conversations handed to a human', ['department', 'assigned'])
auto_close_counter = Counter('conversations_auto_close_total', 'Inactivity warnings and closures', ['action'])
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])

# Security
auth_attempts_counter = Counter('auth_attempts_total', 'Authentication attempts', ['status', 'method'])
webhook_signature_counter = Counter('webhook_signature_verifications_total', 'Webhook signature verifications', ['channel', 'status'])

# Performance
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
cache_operations = Counter('cache_operations_total', 'Cache operations', ['operation', 'status'])
