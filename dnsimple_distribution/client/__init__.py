"""DNSimple API client — zone records and their distribution status."""

from .client import PRODUCTION_URL, SANDBOX_URL, DNSimpleClient
from .models import Whoami, ZoneRecord, ZoneRecordAttributes
