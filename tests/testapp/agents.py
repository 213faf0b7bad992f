from typing import Annotated

from django_ai_agents.contrib.agents import Agent, Retrieval, registry
from django_ai_agents.contrib.tools import tool

from .fakes import ScriptedProvider
from .indexes import TravelGuideIndex


@tool
def search_flights(
    source: Annotated[str, "IATA code of the departure airport"],
    destination: Annotated[str, "IATA code of the arrival airport"],
) -> list[dict]:
    """Search for flights between two airports"""
    return [
        {"airline": "Blue Sky", "price": 120, "from": source, "to": destination},
        {"airline": "Red Eye", "price": 95, "from": source, "to": destination},
    ]


@registry.register()
class TravelAgent(Agent):
    slug = "travel"
    name = "Travel agent"
    description = "Answers travel questions using the travel guide and flight search"
    preamble = "You are a helpful travel agent."
    provider = ScriptedProvider()
    tools = [search_flights]
    retrieval = Retrieval(index=TravelGuideIndex(), count=2)
