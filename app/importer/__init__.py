"""Spreadsheet import engine: parse, map, resolve, validate, import, enroll."""

from app.importer.capabilities import ImportCapabilities
from app.importer.profiles import PROFILES, ImportProfile, get_profile
from app.importer.wizard import ImportWizardSession, WizardOptions, WizardStep

__all__ = [
    "ImportCapabilities",
    "ImportProfile",
    "ImportWizardSession",
    "PROFILES",
    "WizardOptions",
    "WizardStep",
    "get_profile",
]
