from django.apps import AppConfig


class AIAgentsConfig(AppConfig):
    name = "django_ai_agents"
    label = "django_ai_agents"
    verbose_name = "Django AI Agents"

    def ready(self):
        from .conf import validate_settings

        validate_settings()
