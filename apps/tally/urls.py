from django.urls import path

from . import views

app_name = "tally"

urlpatterns = [
    path("entries/", views.entries, name="entries"),
    path("entries/<uuid:version_id>/locations/", views.entry_locations, name="entry-locations"),
    path("entries/<uuid:version_id>/aggregate/", views.entry_aggregate, name="entry-aggregate"),
    path("<str:tally_card_number>/adjustments/", views.adjustments, name="adjustments"),
    path("<str:tally_card_number>/", views.tally_card, name="tally-card"),
]
