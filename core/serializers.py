"""
Core App Serializers - Accounts, onboarding and profiles
"""

from rest_framework import serializers
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password

from .models import BusinessProfile, CourierProfile, UserRole
from .onboarding import SELF_SERVICE_ROLES, account_state

User = get_user_model()


class BusinessProfileSerializer(serializers.ModelSerializer):

    class Meta:
        model = BusinessProfile
        fields = ['business_name', 'business_address', 'latitude', 'longitude', 'place_id']
        extra_kwargs = {
            'latitude': {'min_value': -90, 'max_value': 90},
            'longitude': {'min_value': -180, 'max_value': 180},
        }

    def validate(self, attrs):
        lat = attrs.get('latitude', getattr(self.instance, 'latitude', None))
        lng = attrs.get('longitude', getattr(self.instance, 'longitude', None))
        if (lat is None) != (lng is None):
            raise serializers.ValidationError(
                {'latitude': 'latitude and longitude must be set together.'}
            )
        return attrs


class CourierProfileSerializer(serializers.ModelSerializer):

    class Meta:
        model = CourierProfile
        fields = ['courier_name', 'balance']
        read_only_fields = ['balance']


class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model (read operations)."""

    state = serializers.SerializerMethodField()
    name = serializers.ReadOnlyField()
    profile = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'email', 'display_name', 'name', 'role', 'state',
            'role_assigned_at', 'profile', 'date_joined'
        ]
        read_only_fields = ['id', 'email', 'role', 'role_assigned_at', 'date_joined']

    def get_state(self, obj):
        return account_state(obj).value

    def get_profile(self, obj):
        profile = obj.profile
        if isinstance(profile, BusinessProfile):
            return BusinessProfileSerializer(profile).data
        if isinstance(profile, CourierProfile):
            return CourierProfileSerializer(profile).data
        return None


class UserCreateSerializer(serializers.ModelSerializer):
    """Serializer for registration. The role is chosen later, during onboarding."""

    password = serializers.CharField(
        write_only=True,
        required=True,
        validators=[validate_password]
    )

    class Meta:
        model = User
        fields = ['id', 'email', 'password', 'display_name']
        read_only_fields = ['id']

    def create(self, validated_data):
        return User.objects.create_user(
            email=validated_data['email'],
            password=validated_data['password'],
            display_name=validated_data.get('display_name', ''),
        )


class RoleSelectionSerializer(serializers.Serializer):
    """One-time role pick with the fields of the chosen variant."""

    role = serializers.ChoiceField(choices=[r.value for r in SELF_SERVICE_ROLES])
    business_name = serializers.CharField(max_length=200, required=False, allow_blank=True)
    business_address = serializers.CharField(max_length=300, required=False, allow_blank=True)
    latitude = serializers.FloatField(min_value=-90, max_value=90, required=False)
    longitude = serializers.FloatField(min_value=-180, max_value=180, required=False)
    place_id = serializers.CharField(max_length=255, required=False, allow_blank=True)
    courier_name = serializers.CharField(max_length=150, required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs['role'] == UserRole.BUSINESS:
            errors = {}
            if not attrs.get('business_name'):
                errors['business_name'] = 'Business name is required.'
            if attrs.get('latitude') is None or attrs.get('longitude') is None:
                errors['business_address'] = 'Pick an address from the suggestions.'
            if errors:
                raise serializers.ValidationError(errors)
        elif attrs['role'] == UserRole.COURIER and not attrs.get('courier_name'):
            raise serializers.ValidationError({'courier_name': 'Courier name is required.'})
        return attrs


class CourierSummarySerializer(serializers.ModelSerializer):
    """Admin courier listing with balance and delivery counters."""

    courier_name = serializers.CharField(source='courier_profile.courier_name', default='')
    balance = serializers.DecimalField(
        source='courier_profile.balance', max_digits=12, decimal_places=2, default=0
    )
    active_deliveries = serializers.IntegerField(read_only=True, default=0)
    completed_deliveries = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = User
        fields = [
            'id', 'email', 'courier_name', 'balance',
            'active_deliveries', 'completed_deliveries', 'date_joined'
        ]


class BusinessSummarySerializer(serializers.ModelSerializer):
    """Admin business listing."""

    business = BusinessProfileSerializer(source='business_profile', read_only=True)
    deliveries_count = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = User
        fields = ['id', 'email', 'business', 'deliveries_count', 'date_joined']
