from django.urls import path

from . import views

urlpatterns = [
    path('csrf', views.csrf_view, name='csrf'),
    path('signup/send-otp', views.signup_send_otp_view, name='signup-send-otp'),
    path('signup/verify-otp', views.signup_verify_otp_view, name='signup-verify-otp'),
    path('signin/send-otp', views.signin_send_otp_view, name='signin-send-otp'),
    path('signin/verify-otp', views.signin_verify_otp_view, name='signin-verify-otp'),
    path('logout', views.logout_view, name='logout'),
    path('me', views.me_view, name='me'),
]
