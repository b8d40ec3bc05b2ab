from django.conf import settings
from django.core.signals import setting_changed
from django.dispatch import receiver

_originals = {}

# -- request defaults

# The version attribute of newly created request documents.
WFSCITE_SERVICE_VERSION = getattr(settings, "WFSCITE_SERVICE_VERSION", "2.0.0")

# The SOAP version to use when the caller doesn't provide one ("1.1" or "1.2").
WFSCITE_SOAP_VERSION = getattr(settings, "WFSCITE_SOAP_VERSION", "1.2")

# The binding used for ProtocolBinding.ANY.
WFSCITE_DEFAULT_BINDING = getattr(settings, "WFSCITE_DEFAULT_BINDING", "GET/KVP")

# -- namespaces

# The first prefix to try for namespaces that don't have a well-known alias.
# Further namespaces will be named ns1, ns2, etc...
WFSCITE_DEFAULT_PREFIX = getattr(settings, "WFSCITE_DEFAULT_PREFIX", "tns")


@receiver(setting_changed)
def _on_settings_change(setting, value, enter, **kwargs):
    if not setting.startswith("WFSCITE_"):
        return

    conf_module = globals()
    if value is None and not enter:
        # override_settings().disable() returns what the django settings module had.
        # Revert to our defaults here instead.
        value = _originals.get(setting)
    else:
        # Track defaults of this file for reverting to them
        _originals.setdefault(setting, conf_module[setting])

    conf_module[setting] = value
