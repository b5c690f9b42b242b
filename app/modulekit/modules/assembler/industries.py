from __future__ import annotations

from dataclasses import dataclass

# Module type -> what the generated route/page pair manages.
MODULE_TYPES: dict[str, dict] = {
    "catalog": {
        "description": "Categorized items with names, prices, descriptions, images",
        "admin_component": "CatalogEditor",
        "has_sse": True,
    },
    "booking": {
        "description": "Time-based appointments/reservations with customer info",
        "admin_component": "BookingCalendar",
        "has_sse": True,
    },
    "listings": {
        "description": "Property/product listings with specs, images, status workflow",
        "admin_component": "ListingsManager",
        "has_sse": True,
    },
    "inquiries": {
        "description": "Lead/inquiry management with status pipeline",
        "admin_component": "InquiriesManager",
        "has_sse": True,
    },
    "loyalty": {
        "description": "Points balance, tiers and reward redemption",
        "admin_component": "LoyaltyDashboard",
        "has_sse": False,
    },
}

# Industry -> {module name: module type}. Module names become /api/<name>.
INDUSTRY_MODULES: dict[str, dict[str, str]] = {
    # food & beverage
    "pizza-restaurant": {"menu": "catalog", "orders": "inquiries"},
    "steakhouse": {"menu": "catalog", "reservations": "booking"},
    "coffee-cafe": {"menu": "catalog", "orders": "inquiries", "reservations": "booking", "loyalty": "loyalty"},
    "restaurant": {"menu": "catalog", "reservations": "booking"},
    "bakery": {"menu": "catalog", "orders": "inquiries"},
    # personal services
    "salon-spa": {"services": "catalog", "appointments": "booking"},
    "barbershop": {"services": "catalog", "appointments": "booking"},
    "dental": {"services": "catalog", "appointments": "booking"},
    "yoga": {"classes": "catalog", "bookings": "booking"},
    "fitness-gym": {"classes": "catalog", "memberships": "inquiries"},
    # professional services
    "law-firm": {"services": "catalog", "consultations": "booking"},
    "healthcare": {"services": "catalog", "appointments": "booking"},
    "real-estate": {"listings": "listings", "inquiries": "inquiries"},
    # trades
    "plumber": {"services": "catalog", "quotes": "inquiries"},
    "cleaning": {"services": "catalog", "quotes": "inquiries"},
    "auto-shop": {"services": "catalog", "appointments": "booking"},
    # business & tech
    "saas": {"features": "catalog", "demos": "booking"},
    "ecommerce": {"products": "catalog", "orders": "inquiries"},
    "school": {"programs": "catalog", "enrollments": "inquiries"},
}


@dataclass(frozen=True)
class ModuleLabel:
    label: str
    singular: str
    plural: str


MODULE_LABELS: dict[str, ModuleLabel] = {
    "menu": ModuleLabel("Menu", "Item", "Items"),
    "services": ModuleLabel("Services", "Service", "Services"),
    "classes": ModuleLabel("Classes", "Class", "Classes"),
    "features": ModuleLabel("Features", "Feature", "Features"),
    "products": ModuleLabel("Products", "Product", "Products"),
    "programs": ModuleLabel("Programs", "Program", "Programs"),
    "reservations": ModuleLabel("Reservations", "Reservation", "Reservations"),
    "appointments": ModuleLabel("Appointments", "Appointment", "Appointments"),
    "consultations": ModuleLabel("Consultations", "Consultation", "Consultations"),
    "bookings": ModuleLabel("Bookings", "Booking", "Bookings"),
    "demos": ModuleLabel("Demo Requests", "Demo", "Demos"),
    "listings": ModuleLabel("Listings", "Listing", "Listings"),
    "orders": ModuleLabel("Orders", "Order", "Orders"),
    "quotes": ModuleLabel("Quote Requests", "Quote", "Quotes"),
    "memberships": ModuleLabel("Memberships", "Membership", "Memberships"),
    "enrollments": ModuleLabel("Enrollments", "Enrollment", "Enrollments"),
    "inquiries": ModuleLabel("Inquiries", "Inquiry", "Inquiries"),
    "loyalty": ModuleLabel("Rewards", "Reward", "Rewards"),
}


def industry_names() -> list[str]:
    return sorted(INDUSTRY_MODULES)


def is_known_industry(industry: str) -> bool:
    return industry in INDUSTRY_MODULES


def get_industry_modules(industry: str) -> dict[str, str]:
    return dict(INDUSTRY_MODULES.get(industry) or {"services": "catalog"})


def module_type(module_name: str, industry: str) -> str:
    return get_industry_modules(industry).get(module_name) or _default_type(module_name)


def _default_type(module_name: str) -> str:
    for modules in INDUSTRY_MODULES.values():
        if module_name in modules:
            return modules[module_name]
    return "catalog"


def module_label(module_name: str) -> ModuleLabel:
    return MODULE_LABELS.get(module_name) or ModuleLabel(module_name.replace("-", " ").title(), "Item", "Items")


def industry_catalog() -> list[dict]:
    return [
        {
            "id": name,
            "modules": [{"name": m, "type": t, "label": module_label(m).label} for m, t in INDUSTRY_MODULES[name].items()],
        }
        for name in industry_names()
    ]
