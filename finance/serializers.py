from rest_framework import serializers

from finance.models import Expense


class ExpenseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Expense
        fields = ["id", "branch", "name", "description", "value", "date", "created_at", "updated_at"]
        read_only_fields = ["id", "branch", "created_at", "updated_at"]
        extra_kwargs = {"date": {"required": False}}
