"""
Record categories and their spreadsheet display names.
"""

from typing import Dict, Optional

MEAL = 'meal'
HYDRATION = 'hydration'
EXCRETION = 'excretion'
VITALS = 'vitals'
ORAL_CARE = 'oral-care'
MEDICATION = 'medication'
NOTE = 'note'
BLOOD_SUGAR = 'blood-sugar'
PHYSICIAN_VISIT = 'physician-visit'
WEIGHT = 'weight'
CONFERENCE = 'conference'

# Category -> sheet tab name, in spreadsheet tab order
DISPLAY_NAMES: Dict[str, str] = {
    MEAL: '食事',
    HYDRATION: '水分摂取量',
    EXCRETION: '排便・排尿',
    VITALS: 'バイタル',
    ORAL_CARE: '口腔ケア',
    MEDICATION: '内服',
    NOTE: '特記事項',
    BLOOD_SUGAR: '血糖値インスリン投与',
    PHYSICIAN_VISIT: '往診録',
    WEIGHT: '体重',
    CONFERENCE: 'カンファレンス録',
}

CATEGORIES = tuple(DISPLAY_NAMES)

_BY_DISPLAY_NAME = {name: category for category, name in DISPLAY_NAMES.items()}


def category_for_sheet(sheet_name: Optional[str]) -> Optional[str]:
    """Map a sheet tab name (or a category id) to its category id."""
    if not sheet_name:
        return None
    sheet_name = sheet_name.strip()
    if sheet_name in DISPLAY_NAMES:
        return sheet_name
    return _BY_DISPLAY_NAME.get(sheet_name)


def display_name(category: str) -> str:
    """Human-readable name of a category, falling back to the id itself."""
    return DISPLAY_NAMES.get(category, category)


# Well-known sheet columns used by scoring, correlation and prompt formatting
FIELD_AS_NEEDED_DOSE = '何時に頓服薬を飲まれましたか？'
FIELD_MEDICATION_TIME = '内服はいつのことですか？'
FIELD_BOWEL_MOVEMENT = '排便はありましたか？'
FIELD_URINATION = '排尿はありましたか？'
FIELD_URINE_VOLUME = '排尿量は何ccでしたか？'
FIELD_SYSTOLIC_BP = '最高血圧（BP）はいくつでしたか？'
FIELD_DIASTOLIC_BP = '最低血圧（BP）はいくつでしたか？'
FIELD_BODY_TEMPERATURE = '体温（KT）はいくつでしたか？'
FIELD_PULSE = '脈拍（P）はいくつでしたか？'
FIELD_SPO2 = '酸素飽和度（SpO2）はいくつですか？'
FIELD_NOTES = '特記事項'
