from dataclasses import dataclass
from typing import Optional

ML_PER_OZ = 29.5735
REFERENCE_OZ = 8.0
MEANINGFUL_CALORIES_PER_8OZ = 5


@dataclass(frozen=True)
class BeverageProfile:
    """Hydration factor plus nutrition for one serving of ``serving_oz`` ounces."""

    name: str
    hydration_factor: float
    calories: int
    carbs: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    serving_oz: float = 8.0
    is_dehydrating: bool = False
    alcohol_content: Optional[float] = None

    @property
    def calories_per_8oz(self) -> float:
        return self.calories * (REFERENCE_OZ / self.serving_oz)


@dataclass(frozen=True)
class BeverageNutrition:
    calories: int
    carbs: float
    protein: float
    fat: float


BEVERAGE_PROFILES: dict[str, BeverageProfile] = {
    "water": BeverageProfile("Water", 1.0, 0),
    "sparkling_water": BeverageProfile("Sparkling Water", 1.0, 0),
    "herbal_tea": BeverageProfile("Herbal Tea", 0.95, 2),
    "decaf_coffee": BeverageProfile("Decaf Coffee", 0.95, 5),
    "milk": BeverageProfile("Milk", 0.87, 120, carbs=12, protein=8, fat=5),
    "juice": BeverageProfile("Juice", 0.85, 110, carbs=26, protein=1),
    "cold_pressed_juice": BeverageProfile("Cold Pressed Juice", 0.85, 120, carbs=28, protein=1),
    "coffee": BeverageProfile("Coffee", 0.80, 5),
    "tea": BeverageProfile("Tea", 0.80, 2),
    "sports_drink": BeverageProfile("Sports Drink", 0.90, 50, carbs=14),
    "soda": BeverageProfile("Soda", 0.75, 140, carbs=39, serving_oz=12),
    "energy_drink": BeverageProfile("Energy Drink", 0.65, 110, carbs=28),
    # Alcohol has a net diuretic effect; one serving is one standard drink.
    "beer": BeverageProfile("Beer", -0.4, 150, carbs=13, protein=2, serving_oz=12, is_dehydrating=True, alcohol_content=5.0),
    "wine": BeverageProfile("Wine", -0.6, 125, carbs=4, serving_oz=5, is_dehydrating=True, alcohol_content=13.0),
    "cocktail": BeverageProfile("Cocktail", -0.8, 200, carbs=15, serving_oz=8, is_dehydrating=True, alcohol_content=12.0),
    "spirits": BeverageProfile("Spirits", -1.0, 97, serving_oz=1.5, is_dehydrating=True, alcohol_content=40.0),
    "hard_cider": BeverageProfile("Hard Cider", -0.4, 200, carbs=24, serving_oz=12, is_dehydrating=True, alcohol_content=5.0),
    "hard_seltzer": BeverageProfile("Hard Seltzer", -0.3, 100, carbs=2, serving_oz=12, is_dehydrating=True, alcohol_content=5.0),
}

BEVERAGE_TYPES = list(BEVERAGE_PROFILES.keys())


def get_beverage_profile(beverage_type: str) -> BeverageProfile:
    profile = BEVERAGE_PROFILES.get((beverage_type or "").strip().lower())
    if profile is None:
        raise KeyError(f"Unknown beverage type: {beverage_type}")
    return profile


def ounces_to_ml(amount_oz: float) -> float:
    return amount_oz * ML_PER_OZ


def effective_hydration_ml(amount_oz: float, beverage_type: str) -> int:
    """Net fluid contribution in ml. Negative for diuretic drinks."""
    profile = get_beverage_profile(beverage_type)
    return round(ounces_to_ml(amount_oz) * profile.hydration_factor)


def has_meaningful_calories(beverage_type: str) -> bool:
    return get_beverage_profile(beverage_type).calories_per_8oz > MEANINGFUL_CALORIES_PER_8OZ


def beverage_nutrition(amount_oz: float, beverage_type: str) -> BeverageNutrition:
    profile = get_beverage_profile(beverage_type)
    ratio = amount_oz / profile.serving_oz
    return BeverageNutrition(
        calories=round(profile.calories * ratio),
        carbs=round(profile.carbs * ratio, 1),
        protein=round(profile.protein * ratio, 1),
        fat=round(profile.fat * ratio, 1),
    )


def beverage_calories(amount_oz: float, beverage_type: str) -> int:
    return beverage_nutrition(amount_oz, beverage_type).calories


def standard_drinks(amount_oz: float, beverage_type: str) -> float:
    profile = get_beverage_profile(beverage_type)
    if not profile.is_dehydrating:
        return 0.0
    return round(amount_oz / profile.serving_oz, 1)
