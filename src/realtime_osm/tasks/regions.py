"""Closed enumeration of Geofabrik region codes accepted as task coverage."""

from __future__ import annotations

GEOFABRIK_REGIONS: frozenset[str] = frozenset(
    {
        "afghanistan",
        "africa",
        "alabama",
        "alaska",
        "albania",
        "alberta",
        "algeria",
        "alps",
        "alsace",
        "andorra",
        "angola",
        "antarctica",
        "aquitaine",
        "argentina",
        "arizona",
        "arkansas",
        "arnsberg-regbez",
        "asia",
        "australia",
        "australia-oceania",
        "austria",
        "auvergne",
        "azerbaijan",
        "azores",
        "baden-wuerttemberg",
        "bangladesh",
        "basse-normandie",
        "bayern",
        "belarus",
        "belgium",
        "belize",
        "benin",
        "berkshire",
        "berlin",
        "bhutan",
        "bolivia",
        "bosnia-herzegovina",
        "botswana",
        "bourgogne",
        "brandenburg",
        "brazil",
        "bremen",
        "bretagne",
        "british-columbia",
        "british-isles",
        "buckinghamshire",
        "bulgaria",
        "burkina-faso",
        "burundi",
        "california",
        "cambodia",
        "cambridgeshire",
        "cameroon",
        "canada",
        "canary-islands",
        "cape-verde",
        "central-african-republic",
        "central-america",
        "central-fed-district",
        "centre",
        "centro",
        "chad",
        "champagne-ardenne",
        "cheshire",
        "chile",
        "china",
        "chubu",
        "chugoku",
        "colombia",
        "colorado",
        "comores",
        "congo-brazzaville",
        "congo-democratic-republic",
        "connecticut",
        "cornwall",
        "corse",
        "crimean-fed-district",
        "croatia",
        "cuba",
        "cumbria",
        "cyprus",
        "czech-republic",
        "dach",
        "delaware",
        "denmark",
        "derbyshire",
        "detmold-regbez",
        "devon",
        "district-of-columbia",
        "djibouti",
        "dolnoslaskie",
        "dorset",
        "duesseldorf-regbez",
        "east-sussex",
        "east-yorkshire-with-hull",
        "ecuador",
        "egypt",
        "enfield",
        "england",
        "equatorial-guinea",
        "eritrea",
        "essex",
        "estonia",
        "ethiopia",
        "europe",
        "far-eastern-fed-district",
        "faroe-islands",
        "fiji",
        "finland",
        "florida",
        "france",
        "franche-comte",
        "freiburg-regbez",
        "gabon",
        "gcc-states",
        "georgia",
        "germany",
        "ghana",
        "gloucestershire",
        "great-britain",
        "greater-london",
        "greater-manchester",
        "greece",
        "greenland",
        "guadeloupe",
        "guatemala",
        "guinea",
        "guinea-bissau",
        "guyane",
        "haiti-and-domrep",
        "hamburg",
        "hampshire",
        "haute-normandie",
        "hawaii",
        "herefordshire",
        "hertfordshire",
        "hessen",
        "hokkaido",
        "hungary",
        "iceland",
        "idaho",
        "ile-de-france",
        "illinois",
        "india",
        "indiana",
        "indonesia",
        "iowa",
        "iran",
        "iraq",
        "ireland-and-northern-ireland",
        "isle-of-man",
        "isle-of-wight",
        "isole",
        "israel-and-palestine",
        "italy",
        "ivory-coast",
        "japan",
        "jordan",
        "kaliningrad",
        "kansai",
        "kansas",
        "kanto",
        "karlsruhe-regbez",
        "kazakhstan",
        "kent",
        "kentucky",
        "kenya",
        "koeln-regbez",
        "kosovo",
        "kujawsko-pomorskie",
        "kyrgyzstan",
        "kyushu",
        "lancashire",
        "languedoc-roussillon",
        "latvia",
        "lebanon",
        "leicestershire",
        "lesotho",
        "liberia",
        "libya",
        "liechtenstein",
        "limousin",
        "lithuania",
        "lodzkie",
        "lorraine",
        "louisiana",
        "lubelskie",
        "lubuskie",
        "luxembourg",
        "macedonia",
        "madagascar",
        "maine",
        "malawi",
        "malaysia-singapore-brunei",
        "maldives",
        "mali",
        "malopolskie",
        "malta",
        "manitoba",
        "martinique",
        "maryland",
        "massachusetts",
        "mauritania",
        "mauritius",
        "mayotte",
        "mazowieckie",
        "mecklenburg-vorpommern",
        "mexico",
        "michigan",
        "midi-pyrenees",
        "minnesota",
        "mississippi",
        "missouri",
        "mittelfranken",
        "moldova",
        "monaco",
        "mongolia",
        "montana",
        "montenegro",
        "morocco",
        "mozambique",
        "muenster-regbez",
        "myanmar",
        "namibia",
        "nebraska",
        "nepal",
        "netherlands",
        "nevada",
        "new-brunswick",
        "new-caledonia",
        "new-hampshire",
        "new-jersey",
        "new-mexico",
        "new-york",
        "new-zealand",
        "newfoundland-and-labrador",
        "nicaragua",
        "niederbayern",
        "niedersachsen",
        "niger",
        "nigeria",
        "nord-est",
        "nord-ovest",
        "nord-pas-de-calais",
        "nordrhein-westfalen",
        "norfolk",
        "north-america",
        "north-carolina",
        "north-caucasus-fed-district",
        "north-dakota",
        "north-korea",
        "north-yorkshire",
        "northumberland",
        "northwest-territories",
        "northwestern-fed-district",
        "norway",
        "nottinghamshire",
        "nova-scotia",
        "nunavut",
        "oberbayern",
        "oberfranken",
        "oberpfalz",
        "ohio",
        "oklahoma",
        "ontario",
        "opolskie",
        "oregon",
        "oxfordshire",
        "pakistan",
        "papua-new-guinea",
        "paraguay",
        "pays-de-la-loire",
        "pennsylvania",
        "peru",
        "philippines",
        "picardie",
        "podkarpackie",
        "podlaskie",
        "poitou-charentes",
        "poland",
        "pomorskie",
        "portugal",
        "prince-edward-island",
        "provence-alpes-cote-d-azur",
        "puerto-rico",
        "quebec",
        "reunion",
        "rheinland-pfalz",
        "rhode-island",
        "rhone-alpes",
        "romania",
        "russia",
        "russia-asian-part",
        "russia-european-part",
        "rwanda",
        "saarland",
        "sachsen",
        "sachsen-anhalt",
        "saint-helena-ascension-and-tristan-da-cunha",
        "sao-tome-and-principe",
        "saskatchewan",
        "schleswig-holstein",
        "schwaben",
        "scotland",
        "senegal-and-gambia",
        "serbia",
        "seychelles",
        "shikoku",
        "shropshire",
        "siberian-fed-district",
        "sierra-leone",
        "slaskie",
        "slovakia",
        "slovenia",
        "somalia",
        "somerset",
        "south-africa",
        "south-africa-and-lesotho",
        "south-america",
        "south-carolina",
        "south-dakota",
        "south-fed-district",
        "south-korea",
        "south-sudan",
        "south-yorkshire",
        "spain",
        "sri-lanka",
        "staffordshire",
        "stuttgart-regbez",
        "sud",
        "sudan",
        "suffolk",
        "suriname",
        "surrey",
        "swaziland",
        "sweden",
        "swietokrzyskie",
        "switzerland",
        "syria",
        "taiwan",
        "tajikistan",
        "tanzania",
        "tennessee",
        "texas",
        "thailand",
        "thueringen",
        "togo",
        "tohoku",
        "tuebingen-regbez",
        "tunisia",
        "turkey",
        "turkmenistan",
        "uganda",
        "ukraine",
        "unterfranken",
        "ural-fed-district",
        "uruguay",
        "us-midwest",
        "us-northeast",
        "us-pacific",
        "us-south",
        "us-west",
        "utah",
        "uzbekistan",
        "vermont",
        "vietnam",
        "virginia",
        "volga-fed-district",
        "wales",
        "warminsko-mazurskie",
        "washington",
        "west-midlands",
        "west-sussex",
        "west-virginia",
        "west-yorkshire",
        "wielkopolskie",
        "wiltshire",
        "wisconsin",
        "worcestershire",
        "wyoming",
        "yemen",
        "yukon",
        "zachodniopomorskie",
        "zambia",
        "zimbabwe",
    },
)


def is_region_code(value: str) -> bool:
    return value.strip().lower() in GEOFABRIK_REGIONS
