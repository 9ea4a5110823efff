"""
Shared constants used across multiple modules.
Single source of truth for exclusion tables, thresholds and score weights.

Everything here is static configuration: the correlation and anomaly layers
read these tables, they never mutate them.
"""

# Canonical category order (drives alignment order and tie-breaks)
CATEGORIES = ["sleep", "nutrition", "activity", "vitals", "wellness"]

# Clock-time fields parsed from "HH:MM" into decimal hours.  Any field whose
# name contains "time" is also treated as a clock field.
TIME_METRIC_NAMES = {
    "bedtime", "wake_time", "caffeine_last_time",
    "breakfast_time", "lunch_time", "dinner_time",
    "last_meal_time", "workout_time",
}

# ─── Correlation layer ────────────────────────────────────────

MIN_CORRELATION_PAIRS = 5
CORRELATION_CLAMP = 0.99

# Same-category pairs above this are "too obvious" to report
SAME_CATEGORY_SOFT_CAP = 0.75

# Arithmetic components of other reported metrics
DERIVED_METRICS = {
    "snacks_calories", "breakfast_calories", "lunch_calories",
    "dinner_calories", "distance_km", "floors_climbed",
    "active_minutes", "calories_burned",
}

# Physiologically obvious same-domain pairs (order-insensitive)
TRIVIAL_SAME_CATEGORY_PAIRS = frozenset(frozenset(p) for p in [
    # Sleep
    ("sleep_duration_hours", "sleep_quality_score"),
    ("sleep_duration_hours", "deep_sleep_hours"),
    ("sleep_duration_hours", "rem_sleep_hours"),
    ("deep_sleep_hours", "rem_sleep_hours"),
    ("sleep_quality_score", "deep_sleep_hours"),
    ("sleep_quality_score", "sleep_efficiency"),
    ("resting_heart_rate", "hrv_ms"),
    # Activity
    ("steps", "distance_km"),
    ("steps", "active_minutes"),
    ("steps", "floors_climbed"),
    ("steps", "calories_burned"),
    ("active_minutes", "exercise_minutes"),
    ("avg_heart_rate", "max_heart_rate"),
    # Nutrition
    ("calories", "protein_g"),
    ("calories", "carbs_g"),
    ("calories", "fats_g"),
    ("calories", "breakfast_calories"),
    ("calories", "lunch_calories"),
    ("calories", "dinner_calories"),
    ("calories", "snacks_calories"),
    ("sugar_g", "carbs_g"),
    # Vitals
    ("blood_pressure_systolic", "blood_pressure_diastolic"),
    ("weight_kg", "body_fat_percent"),
    ("weight_kg", "muscle_mass_kg"),
    ("body_fat_percent", "muscle_mass_kg"),
    # Wellness
    ("stress_level", "anxiety_level"),
    ("energy_level", "mood_score"),
    ("mood_score", "productivity"),
])

# ─── Anomaly layer ────────────────────────────────────────────

MIN_BASELINE_POINTS = 10

# Substring match: natural day-to-day variance makes flagging meaningless
ANOMALY_EXCLUDED_METRICS = [
    "wake_time", "bedtime", "breakfast_time", "lunch_time", "dinner_time",
    "last_meal_time", "workout_time", "caffeine_last_time", "caffeine_cups",
    "snacks_calories", "meals_count", "social_interactions",
    "screen_time_before_bed",
]

# Minimum |deviation| to count as practically significant (substring match,
# first hit wins; missing metrics never qualify)
PRACTICAL_THRESHOLDS = {
    "resting_heart_rate": 5,
    "blood_pressure_systolic": 10,
    "blood_pressure_diastolic": 8,
    "oxygen_saturation": 2,
    "body_temperature": 0.5,
    "hrv_ms": 10,
    "sleep_duration_hours": 1.5,
    "sleep_quality_score": 15,
    "deep_sleep_hours": 0.5,
    "rem_sleep_hours": 0.5,
    "weight_kg": 1.5,
    "body_fat_percent": 2,
    "muscle_mass_kg": 1.0,
    "calories": 500,
    "steps": 3000,
    "water_glasses": 3,
    "exercise_minutes": 30,
    "stress_level": 2,
    "energy_level": 2,
    "mood_score": 2,
    "anxiety_level": 2,
    "sugar_g": 20,
    "carbs_g": 50,
    "protein_g": 30,
    "fats_g": 20,
}

# Run-length minimums by metric class (substring match)
FAST_CHANGING_MARKERS = ("heart_rate", "stress", "hrv", "blood_pressure")
SLOW_CHANGING_MARKERS = ("body_fat", "weight", "muscle_mass")
MIN_RUN_FAST = 2
MIN_RUN_SLOW = 7
MIN_RUN_DEFAULT = 3

# Severity cut-offs on z
SEVERITY_HIGH_Z = 3.0
SEVERITY_MEDIUM_Z = 2.5
EXTREME_Z = 3.5
SEVERE_SINGLE_DAY_Z = 2.5
SEVERE_PRACTICAL_Z = 2.0

SEVERITY_WEIGHT = {"high": 3, "medium": 2, "low": 1}
CATEGORY_PRIORITY = {
    "vitals": 5, "sleep": 4, "wellness": 3, "nutrition": 2, "activity": 1,
}
MAX_ANOMALY_FINDINGS = 3

# Clinical reference ranges: (min, max, critical_min, critical_max)
CLINICAL_THRESHOLDS = {
    "sleep_duration_hours":     (5, 10, 4, 12),
    "sleep_quality_score":      (60, 100, 40, 100),
    "resting_heart_rate":       (50, 100, 40, 120),
    "blood_pressure_systolic":  (90, 140, 80, 180),
    "blood_pressure_diastolic": (60, 90, 50, 120),
    "hrv_ms":                   (30, 100, 20, 120),
    "steps":                    (3000, 20000, 0, 30000),
    "calories":                 (1200, 4000, 800, 5000),
    "sugar_g":                  (0, 100, 0, 150),
    "stress_level":             (0, 10, 0, 10),
    "energy_level":             (0, 10, 0, 10),
}

# ─── Health score ─────────────────────────────────────────────

SCORE_WEIGHTS = {
    "sleep": 0.25,
    "activity": 0.20,
    "nutrition": 0.20,
    "vitals": 0.20,
    "wellness": 0.15,
}

SUGAR_SOFT_CAP_G = 40
CAFFEINE_CUTOFF_HOUR = 15
PROTEIN_TARGET_G = 100
STEPS_TARGET = 10_000
MAX_RECOMMENDATIONS = 3
