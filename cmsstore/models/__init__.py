from .models import *  # noqa: F401,F403
from . import hooks  # noqa: F401  (registers mapper events)
from .rules import ENTITY_RULES, EntityRules, FieldRule, rules_for  # noqa: F401
