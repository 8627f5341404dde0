"""Route blueprints for the webhook app."""
from .webhooks import webhooks_bp
