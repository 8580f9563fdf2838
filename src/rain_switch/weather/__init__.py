"""Weather provider integrations and the fallback chain."""

from .base import HttpWeatherProvider, WeatherProvider
from .chain import ProviderChain, build_provider_chain
from .models import ForecastSlice, Nowcast, PrecipType
from .nws import NWSWeatherProvider
from .openweathermap import OpenWeatherMapProvider
from .tomorrow import TomorrowProvider
from .weatherkit import WeatherKitProvider

__all__ = [
    "ForecastSlice",
    "HttpWeatherProvider",
    "NWSWeatherProvider",
    "Nowcast",
    "OpenWeatherMapProvider",
    "PrecipType",
    "ProviderChain",
    "TomorrowProvider",
    "WeatherKitProvider",
    "WeatherProvider",
    "build_provider_chain",
]
