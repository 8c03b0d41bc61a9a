# client/pest_library.py
# Pest reference data shown next to a detection result, plus the
# published pest list from the API

import logging
import re

from django.conf import settings

from .serializers import PestInfoSerializer, decode_list

logger = logging.getLogger(__name__)


def static_url(path):
    return f"{settings.STATIC_BASE_URL}/static/{path}"


def _image(path, stage, description):
    return {'url': static_url(path), 'stage': stage, 'description': description}


PEST_REFERENCE_DATA = {
    # ==================== RICE PESTS ====================
    'stem-borer': {
        'id': 'stem-borer',
        'name': 'Stem Borer',
        'scientific_name': 'Scirpophaga incertulas',
        'crop': 'Rice',
        'reference_images': [
            _image('pests/stemborer.jpg', 'adult', 'Adult moth - yellowish-white with brown markings'),
        ],
        'damage_image': static_url('damage/stemborerdamage.jpg'),
        'identification_tips': [
            'Yellowish-white moth with triangular shape',
            'Dark spots and streaks on forewings',
            'Wingspan about 20-30mm',
            'Look for "deadheart" in young plants',
            'Check for "whitehead" in mature plants',
        ],
        'symptoms': 'Deadhearts in vegetative stage, whiteheads in reproductive stage, '
                    'hollow stems with boring holes',
        'control_methods': 'Apply granular insecticides (cartap, fipronil), use light traps, '
                           'remove affected plants, biological control with Trichogramma',
        'prevention': 'Use resistant varieties, proper planting timing, remove stubbles after harvest, '
                      'maintain field sanitation',
    },
    'whorl-maggot': {
        'id': 'whorl-maggot',
        'name': 'Whorl Maggot',
        'scientific_name': 'Hydrellia philippina',
        'crop': 'Rice',
        'reference_images': [
            _image('pests/whorlmaggot.jpg', 'adult', 'Small fly with shiny metallic appearance'),
        ],
        'damage_image': static_url('damage/whorlmaggotdamage.jpg'),
        'identification_tips': [
            'Very small fly (2-3mm)',
            'Shiny black or metallic green/blue color',
            'Fast-flying, difficult to catch',
            'Larvae create transparent patches on leaves',
            'Most active during wet season',
        ],
        'symptoms': 'Transparent patches on young leaves, stunted growth, yellowing of central whorl leaves',
        'control_methods': 'Use resistant varieties, apply carbofuran granules, '
                           'spray contact insecticides early morning',
        'prevention': 'Avoid over-fertilization with nitrogen, maintain proper water management, '
                      'use certified seeds',
    },
    'leaf-folder': {
        'id': 'leaf-folder',
        'name': 'Leaf Folder',
        'scientific_name': 'Cnaphalocrocis medinalis',
        'crop': 'Rice',
        'reference_images': [
            _image('pests/leaffolder.jpg', 'adult', 'Moth with brown wings and wavy white/cream patterns'),
        ],
        'damage_image': static_url('damage/leaffolderdamage.jpg'),
        'identification_tips': [
            'Brown moth with distinctive wavy patterns',
            'White or cream colored lines across wings',
            'Wingspan 15-20mm',
            'Larvae fold leaves into tubes',
            'Green larvae with brown head',
        ],
        'symptoms': 'Longitudinally folded leaves, white longitudinal streaks on leaves, '
                    'reduced photosynthesis',
        'control_methods': 'Manual removal of folded leaves, spray with chlorantraniliprole or '
                           'flubendiamide, use light traps',
        'prevention': 'Avoid excessive nitrogen, balanced fertilization, use resistant varieties, '
                      'maintain field sanitation',
    },
    'rice-bug': {
        'id': 'rice-bug',
        'name': 'Rice Bug',
        'scientific_name': 'Leptocorisa oratorius',
        'crop': 'Rice',
        'reference_images': [
            _image('pests/ricebug.jpg', 'adult', 'Long slender bug, brown to reddish-brown'),
        ],
        'damage_image': static_url('damage/ricebugdamage.jpg'),
        'identification_tips': [
            'Long slender body (15-20mm)',
            'Brown to reddish-brown color',
            'Very long antennae (longer than body)',
            'Narrow head',
            'Feeds on developing grains causing discoloration',
        ],
        'symptoms': 'Discolored or empty grains, "buggy" grains with dark spots, reduced grain weight, '
                    'unfilled grains',
        'control_methods': 'Spray with malathion or fenitrothion during milk to dough stage, '
                           'hand collection in small fields',
        'prevention': 'Synchronous planting in area, remove weedy grasses around fields, use pheromone traps',
    },
    'green-leafhopper': {
        'id': 'green-leafhopper',
        'name': 'Green Leafhopper',
        'scientific_name': 'Nephotettix virescens',
        'crop': 'Rice',
        'reference_images': [
            _image('pests/greenleafhopper.jpg', 'adult', 'Bright green body with distinctive black markings'),
        ],
        'damage_image': static_url('damage/greenleafhopperdamage.jpg'),
        'identification_tips': [
            'Bright green color',
            'Black markings on head and thorax',
            'Very small (3-4mm)',
            'Wedge-shaped body',
            'Jumps quickly when disturbed',
        ],
        'symptoms': 'Yellowing and stunting (tungro disease), hopper burn, reduced tillering, '
                    'orange-yellow discoloration',
        'control_methods': 'Use resistant varieties, apply imidacloprid or thiamethoxam, '
                           'spray neem-based products',
        'prevention': 'Remove weeds and volunteer rice plants, use virus-free seeds, avoid excessive nitrogen',
    },
    'brown-planthopper': {
        'id': 'brown-planthopper',
        'name': 'Brown Planthopper',
        'scientific_name': 'Nilaparvata lugens',
        'crop': 'Rice',
        'reference_images': [
            _image('pests/brownplanthopper.jpg', 'adult', 'Small brown insect with transparent wings'),
        ],
        'damage_image': static_url('damage/planthopperdamage.jpg'),
        'identification_tips': [
            'Small brown insect (3-4mm)',
            'Transparent wings held roof-like over body',
            'Pale brown to dark brown color',
            'Forms colonies at base of plants',
            'Causes "hopper burn"',
        ],
        'symptoms': 'Yellowing and drying of plants (hopper burn), stunted growth, reduced tillering, '
                    'plant death in severe cases',
        'control_methods': 'Use resistant varieties, apply buprofezin or pymetrozine, reduce nitrogen, '
                           'encourage natural enemies',
        'prevention': 'Balanced fertilization, alternate wetting and drying, use resistant varieties, '
                      'field sanitation',
    },

    # ==================== CORN PESTS ====================
    'armyworm': {
        'id': 'armyworm',
        'name': 'Armyworm',
        'scientific_name': 'Spodoptera frugiperda',
        'crop': 'Corn',
        'reference_images': [
            _image('pests/armywormoth.jpg', 'adult', 'Adult moth - brown with mottled patterns'),
            _image('pests/armyworm.jpg', 'larva', 'Larva/caterpillar - green to brown with stripes'),
        ],
        'damage_image': static_url('damage/armywormdamage.jpg'),
        'identification_tips': [
            'Larvae have distinctive inverted "Y" on head',
            'Four dark spots forming square on last segment',
            'Green to brown color with stripes',
            'Feeds in whorl during day',
            'Adult moth is mottled brown-gray',
        ],
        'symptoms': 'Ragged holes in leaves, sawdust-like frass in whorl, damaged tassels and ears, '
                    'skeletonized leaves',
        'control_methods': 'Early detection and hand-picking, Bt-based biopesticides, '
                           'chlorantraniliprole, emamectin benzoate',
        'prevention': 'Early planting, crop rotation, remove crop residues, use pheromone traps, intercropping',
    },
    'fall-armyworm': {
        'id': 'fall-armyworm',
        'name': 'Fall Armyworm',
        'scientific_name': 'Spodoptera frugiperda',
        'crop': 'Corn',
        'reference_images': [
            _image('pests/armywormoth.jpg', 'adult', 'Adult moth - brown with mottled patterns'),
            _image('pests/armyworm.jpg', 'larva', 'Caterpillar with distinctive Y marking on head'),
        ],
        'damage_image': static_url('damage/armywormdamage.jpg'),
        'identification_tips': [
            'Larvae have distinctive inverted "Y" on head',
            'Four dark spots forming square on last segment',
            'Green to brown color with longitudinal stripes',
            'Feeds in whorl during day',
            'Can cause severe defoliation',
        ],
        'symptoms': 'Ragged holes in leaves, sawdust-like frass in whorl, damaged tassels and ears, '
                    'window-pane feeding on young leaves',
        'control_methods': 'Early detection crucial, Bt-based biopesticides, spinosad, '
                           'chlorantraniliprole, emamectin benzoate',
        'prevention': 'Monitor regularly, early planting, crop rotation, remove crop residues, '
                      'use pheromone traps, intercropping with non-host crops',
    },
    'asian-corn-borer': {
        'id': 'asian-corn-borer',
        'name': 'Asian Corn Borer',
        'scientific_name': 'Ostrinia furnacalis',
        'crop': 'Corn',
        'reference_images': [
            _image('pests/cornborermoth.jpg', 'adult', 'Adult moth - yellowish-brown with wavy patterns'),
            _image('pests/cornborerlarvae.jpg', 'larva', 'Larva inside corn stalk - pinkish-white with brown head'),
        ],
        'damage_image': static_url('damage/cornborerlarvaedamage.jpg'),
        'identification_tips': [
            'Larvae are pinkish-white with brown head',
            'Multiple small black spots on body segments',
            'Creates tunnels in stalks and ears',
            'Sawdust-like frass at entry holes',
            'Adult moth has zigzag patterns on wings',
        ],
        'symptoms': 'Shot-hole appearance on leaves, entry holes in stalks, broken tassels, '
                    'damaged kernels, lodging',
        'control_methods': 'Bt corn varieties, apply granular insecticides in whorl (carbofuran), '
                           'trichogramma wasps',
        'prevention': 'Plant Bt corn, destroy crop residues, proper crop rotation, remove volunteer corn, '
                      'early planting',
    },
}

# Pest name to crop type, for reports that do not name the crop
PEST_CROP_MAPPING = {}
for _pest in PEST_REFERENCE_DATA.values():
    _crop = _pest['crop'].lower()
    PEST_CROP_MAPPING[_pest['name'].lower()] = _crop
    PEST_CROP_MAPPING[_pest['id']] = _crop
    PEST_CROP_MAPPING[_pest['scientific_name'].lower()] = _crop
PEST_CROP_MAPPING.update({
    'army worm': 'corn',
    'corn borer': 'corn',
})

MIN_PARTIAL_MATCH_LENGTH = 4

RICE_KEYWORDS = ['rice', 'planthopper', 'leafhopper', 'stem borer', 'whorl maggot', 'leaf folder']
CORN_KEYWORDS = ['corn', 'armyworm', 'army worm', 'borer']


def normalize_pest_name(name):
    """Lowercase and drop spaces, hyphens and underscores."""
    if not name:
        return ''
    return re.sub(r'[\s\-_]+', '', name.lower().strip())


def get_pest_by_id(pest_id):
    """
    Find reference data for a pest id or a free-form pest name.

    Accepts "Fall Armyworm", "fall-armyworm", "fallarmyworm" or the
    scientific name. Falls back to containment, so "Rice Stem Borer" still
    finds Stem Borer. Matching part of a longer name takes at least four
    characters.
    """
    if not pest_id or not pest_id.strip():
        return None

    key = pest_id.lower().strip()
    if key in PEST_REFERENCE_DATA:
        return PEST_REFERENCE_DATA[key]

    wanted = normalize_pest_name(pest_id)
    for pest in PEST_REFERENCE_DATA.values():
        if wanted in (
            normalize_pest_name(pest['name']),
            normalize_pest_name(pest['id']),
            normalize_pest_name(pest['scientific_name']),
        ):
            return pest

    for pest in PEST_REFERENCE_DATA.values():
        name = normalize_pest_name(pest['name'])
        if name in wanted:
            return pest
        if len(wanted) >= MIN_PARTIAL_MATCH_LENGTH and wanted in name:
            return pest

    logger.debug("No reference data for pest %r", pest_id)
    return None


def get_pests_by_crop(crop=None):
    if not crop:
        return list(PEST_REFERENCE_DATA.values())
    crop = crop.lower()
    return [pest for pest in PEST_REFERENCE_DATA.values() if pest['crop'].lower() == crop]


def search_pests(query=None):
    if not query or not query.strip():
        return list(PEST_REFERENCE_DATA.values())
    query = query.lower().strip()
    return [
        pest for pest in PEST_REFERENCE_DATA.values()
        if query in pest['name'].lower()
        or query in pest['scientific_name'].lower()
        or query in pest['symptoms'].lower()
    ]


def get_all_pest_names():
    return [
        {'id': pest['id'], 'name': pest['name'], 'scientific_name': pest['scientific_name']}
        for pest in PEST_REFERENCE_DATA.values()
    ]


def get_crop_from_pest(pest_name):
    """
    Determines the crop type based on the pest name.

    Args:
        pest_name (str): The name of the pest

    Returns:
        str: 'rice' or 'corn', 'rice' when the pest is unknown
    """
    if not pest_name:
        return 'rice'

    normalized_pest = pest_name.lower().strip()
    if normalized_pest in PEST_CROP_MAPPING:
        return PEST_CROP_MAPPING[normalized_pest]

    for keyword in RICE_KEYWORDS:
        if keyword in normalized_pest:
            return 'rice'
    for keyword in CORN_KEYWORDS:
        if keyword in normalized_pest:
            return 'corn'
    return 'rice'


class PestLibrary:
    """The published pest information list served by the API."""

    def __init__(self, client):
        self.client = client
        self.pests = []

    def load(self):
        response = self.client.get('/pests/')
        self.pests = decode_list(response.data, PestInfoSerializer)
        logger.info("Loaded %d pests", len(self.pests))
        return self.pests

    def filtered(self, crop=None, search=None):
        pests = self.pests
        if crop and crop != 'all':
            crop = crop.lower()
            pests = [p for p in pests if crop in (p.get('crop_affected') or '').lower()]
        if search:
            search = search.lower().strip()
            pests = [
                p for p in pests
                if search in (p.get('name') or '').lower()
                or search in (p.get('scientific_name') or '').lower()
            ]
        return pests

    def reference_for(self, pest):
        """Reference images and tips for a pest from the list, if there are any."""
        return get_pest_by_id(pest.get('name')) or get_pest_by_id(pest.get('scientific_name'))
