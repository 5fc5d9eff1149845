from django.urls import path

from . import views

urlpatterns = [
    path('', views.request_list_view, name='emergency-list'),
    path('request', views.request_create_view, name='emergency-create'),
    path('nearby', views.request_nearby_view, name='emergency-nearby'),
    path('stats/overview', views.stats_overview_view, name='emergency-stats'),

    # Caller's own requests and responses
    path('user/requests', views.user_requests_view, name='emergency-user-requests'),
    path('user/incoming-responses', views.incoming_responses_view, name='emergency-incoming-responses'),
    path('user/outgoing-responses', views.outgoing_responses_view, name='emergency-outgoing-responses'),

    path('<int:pk>', views.request_detail_view, name='emergency-detail'),
    path('<int:pk>/respond', views.request_respond_view, name='emergency-respond'),
    path('<int:pk>/status', views.request_status_view, name='emergency-status'),
    path('<int:pk>/responses/<int:response_pk>', views.response_decision_view, name='emergency-response-decision'),
]
