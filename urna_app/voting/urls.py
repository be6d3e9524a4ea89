from django.urls import path

from voting import views_health, views_results, views_vote

urlpatterns = [
    path("healthz", views_health.healthz, name="healthz"),
    path("readyz", views_health.readyz, name="readyz"),

    path("elections/<int:election_id>/ballot/", views_vote.election_ballot, name="election-ballot"),
    path(
        "elections/<int:election_id>/offices/<int:office_id>/vote/",
        views_vote.election_vote_submit,
        name="election-vote-submit",
    ),
    path(
        "elections/<int:election_id>/participation/",
        views_results.election_participation,
        name="election-participation",
    ),
    path("results/<str:public_link>/", views_results.election_public_results, name="election-public-results"),
]
