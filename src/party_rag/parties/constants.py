"""Static reference data for the parties whose programmes are indexed."""

from typing import Dict, List, TypedDict


class PartyData(TypedDict):
    short_name: str
    name: str
    color: str


PARTY_DATA: List[PartyData] = [
    {"short_name": "AP", "name": "Arbeiderpartiet", "color": "#e30613"},
    {"short_name": "FRP", "name": "Fremskrittspartiet", "color": "#003d82"},
    {"short_name": "H", "name": "Høyre", "color": "#0084d1"},
    {"short_name": "KRF", "name": "Kristelig Folkeparti", "color": "#f4a11e"},
    {"short_name": "MDG", "name": "Miljøpartiet De Grønne", "color": "#4a7c24"},
    {"short_name": "R", "name": "Rødt", "color": "#d2001f"},
    {"short_name": "SP", "name": "Senterpartiet", "color": "#00a950"},
    {"short_name": "SV", "name": "Sosialistisk Venstreparti", "color": "#dc143c"},
    {"short_name": "V", "name": "Venstre", "color": "#00a651"},
]

# Keyed by upper-case short name
PARTY_NAMES: Dict[str, str] = {p["short_name"]: p["name"] for p in PARTY_DATA}
