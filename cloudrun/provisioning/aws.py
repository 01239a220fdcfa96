"""AWS provider: key pair, security group and EC2 instance via boto3."""

import contextlib
import logging
from functools import cached_property

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from cloudrun.errors import ProviderError
from cloudrun.provisioning.types import InstanceSpec

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_PARAMETER = "/aws/service/ami-amazon-linux-latest/amzn2-ami-hvm-x86_64-gp2"
DEFAULT_USERNAME = "ec2-user"
SECURITY_GROUP_DESCRIPTION = "cloudrun ephemeral instance"
DOCKER_COMPOSE_URL = (
    "https://github.com/docker/compose/releases/latest/download/docker-compose-$(uname -s)-$(uname -m)"
)

# Error codes that mean the resource is already gone
_NOT_FOUND_CODES = {
    "InvalidInstanceID.NotFound",
    "InvalidGroup.NotFound",
    "InvalidKeyPair.NotFound",
    "InvalidSpotInstanceRequestID.NotFound",
}


@contextlib.contextmanager
def _api(action, ignore_not_found=False):
    """Translate botocore failures into ProviderError."""
    try:
        yield
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        if ignore_not_found and code in _NOT_FOUND_CODES:
            logger.info(f"{action}: already absent ({code}).")
            return
        raise ProviderError(f"{action} failed: {e}") from e
    except WaiterError as e:
        raise ProviderError(f"{action} failed while waiting: {e}") from e
    except BotoCoreError as e:
        raise ProviderError(f"{action} failed: {e}") from e


class AwsProvider:
    """EC2 implementation of the provider capability interface."""

    name = "aws"
    default_username = DEFAULT_USERNAME

    def __init__(self, region=None, ec2_client=None, ssm_client=None, dry_run=False):
        self.region = region
        self.dry_run = dry_run
        if ec2_client is not None:
            self.__dict__["_ec2"] = ec2_client
        if ssm_client is not None:
            self.__dict__["_ssm"] = ssm_client

    @cached_property
    def _ec2(self):
        return boto3.client("ec2", region_name=self.region)

    @cached_property
    def _ssm(self):
        return boto3.client("ssm", region_name=self.region)

    def _dry_run(self, request, **params):
        args = " ".join(f"{k}={v}" for k, v in params.items())
        logger.info(f"[dry-run] {request} {args}".rstrip())

    # ── Creation ──────────────────────────────────────────────────

    def create_credential_pair(self, name):
        if self.dry_run:
            self._dry_run("ec2 create_key_pair", KeyName=name)
            return name, ""
        with _api(f"Create key pair {name}"):
            response = self._ec2.create_key_pair(KeyName=name)
        logger.info(f"Created key pair {name}")
        return response["KeyName"], response["KeyMaterial"]

    def create_network_rule(self, name, ports):
        permissions = [
            {
                "IpProtocol": "tcp",
                "FromPort": port,
                "ToPort": port,
                "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
            }
            for port in ports
        ]
        if self.dry_run:
            self._dry_run("ec2 create_security_group", GroupName=name)
            self._dry_run("ec2 authorize_security_group_ingress", GroupName=name, Ports=",".join(map(str, ports)))
            return f"dry-run-{name}"

        with _api(f"Create security group {name}"):
            response = self._ec2.create_security_group(GroupName=name, Description=SECURITY_GROUP_DESCRIPTION)
        group_id = response["GroupId"]
        if permissions:
            # Roll back the group: the caller only records ids of completed rules.
            # A group that survives the rollback is handed back on the error.
            try:
                with _api(f"Authorize ingress on {group_id}"):
                    self._ec2.authorize_security_group_ingress(GroupId=group_id, IpPermissions=permissions)
            except ProviderError as e:
                try:
                    with _api(f"Delete security group {group_id}", ignore_not_found=True):
                        self._ec2.delete_security_group(GroupId=group_id)
                except ProviderError as cleanup_error:
                    logger.warning(f"Could not roll back security group {group_id}: {cleanup_error}")
                    e.resource_id = group_id
                raise
        logger.info(f"Created security group {name} ({group_id})")
        return group_id

    def resolve_latest_base_image(self, query=None):
        parameter = query or DEFAULT_IMAGE_PARAMETER
        if not parameter.startswith("/"):
            # Already an AMI id
            return parameter
        if self.dry_run:
            self._dry_run("ssm get_parameter", Name=parameter)
            return "ami-dry-run"
        with _api(f"Resolve image {parameter}"):
            response = self._ssm.get_parameter(Name=parameter)
        image_id = response["Parameter"]["Value"]
        logger.info(f"Using AMI {image_id}")
        return image_id

    def _launch_specification(self, spec: InstanceSpec):
        return {
            "InstanceType": spec.instance_type,
            "ImageId": spec.image_id,
            "KeyName": spec.key_name,
            "SecurityGroupIds": [spec.network_rule_id],
        }

    def launch_instance(self, spec):
        if self.dry_run:
            self._dry_run("ec2 run_instances", **self._launch_specification(spec))
            return "i-dry-run"
        with _api("Run instance"):
            response = self._ec2.run_instances(MinCount=1, MaxCount=1, **self._launch_specification(spec))
        instances = response.get("Instances", [])
        if not instances:
            raise ProviderError("Run instance returned no instances")
        instance_id = instances[0]["InstanceId"]
        logger.info(f"Created EC2 instance {instance_id}. Waiting for it to become available")
        return instance_id

    def launch_spot_instance(self, spec, price_ceiling):
        if self.dry_run:
            self._dry_run("ec2 request_spot_instances", SpotPrice=price_ceiling, **self._launch_specification(spec))
            return "sir-dry-run"
        with _api("Request spot instance"):
            response = self._ec2.request_spot_instances(
                SpotPrice=str(price_ceiling),
                InstanceCount=1,
                LaunchSpecification=self._launch_specification(spec),
            )
        requests = response.get("SpotInstanceRequests", [])
        if not requests:
            raise ProviderError("Spot request returned no requests")
        request_id = requests[0]["SpotInstanceRequestId"]
        logger.info(f"Created spot request {request_id}. Waiting for it to become fulfilled")
        return request_id

    # ── Readiness ─────────────────────────────────────────────────

    def await_spot_fulfillment(self, request_id):
        if self.dry_run:
            self._dry_run("ec2 wait spot_instance_request_fulfilled", SpotInstanceRequestIds=request_id)
            return "i-dry-run"
        with _api(f"Wait for spot request {request_id}"):
            self._ec2.get_waiter("spot_instance_request_fulfilled").wait(SpotInstanceRequestIds=[request_id])
            response = self._ec2.describe_spot_instance_requests(SpotInstanceRequestIds=[request_id])
        instance_id = response["SpotInstanceRequests"][0].get("InstanceId")
        if not instance_id:
            raise ProviderError(f"Spot request {request_id} is fulfilled but has no instance")
        logger.info(f"Spot request {request_id} is fulfilled. Created EC2 instance {instance_id}")
        return instance_id

    def await_ready(self, instance_id):
        if self.dry_run:
            self._dry_run("ec2 wait instance_status_ok", InstanceIds=instance_id)
            return
        with _api(f"Wait for instance {instance_id}"):
            self._ec2.get_waiter("instance_status_ok").wait(InstanceIds=[instance_id])

    def instance_address(self, instance_id):
        if self.dry_run:
            return "dry-run-host"
        with _api(f"Describe instance {instance_id}"):
            response = self._ec2.describe_instances(InstanceIds=[instance_id])
        instance = response["Reservations"][0]["Instances"][0]
        host = instance.get("PublicDnsName") or instance.get("PublicIpAddress", "")
        if not host:
            raise ProviderError(f"Instance {instance_id} has no public address")
        logger.info(
            f"EC2 instance {instance_id} is ready to accept connections on {host} ({instance.get('PublicIpAddress', '')})"
        )
        return host

    def bootstrap_commands(self, username):
        return [
            "sudo amazon-linux-extras install -y docker",
            "sudo service docker start",
            f"sudo usermod -a -G docker {username}",
            f"sudo curl -L {DOCKER_COMPOSE_URL} -o /usr/local/bin/docker-compose",
            "sudo chmod +x /usr/local/bin/docker-compose",
        ]

    # ── Teardown ──────────────────────────────────────────────────

    def cancel_spot_request(self, request_id):
        if self.dry_run:
            self._dry_run("ec2 cancel_spot_instance_requests", SpotInstanceRequestIds=request_id)
            return
        with _api(f"Cancel spot request {request_id}", ignore_not_found=True):
            self._ec2.cancel_spot_instance_requests(SpotInstanceRequestIds=[request_id])
        logger.info(f"Cancelled spot request {request_id}")

    def terminate(self, instance_id):
        if self.dry_run:
            self._dry_run("ec2 terminate_instances", InstanceIds=instance_id)
            return
        with _api(f"Terminate instance {instance_id}", ignore_not_found=True):
            self._ec2.terminate_instances(InstanceIds=[instance_id])
            logger.info(f"Terminating EC2 instance {instance_id}...")
            self._ec2.get_waiter("instance_terminated").wait(InstanceIds=[instance_id])
            logger.info(f"EC2 instance {instance_id} terminated")

    def delete_network_rule(self, rule_id):
        if self.dry_run:
            self._dry_run("ec2 delete_security_group", GroupId=rule_id)
            return
        with _api(f"Delete security group {rule_id}", ignore_not_found=True):
            self._ec2.delete_security_group(GroupId=rule_id)
        logger.info(f"Deleted security group {rule_id}")

    def delete_credential_pair(self, name):
        if self.dry_run:
            self._dry_run("ec2 delete_key_pair", KeyName=name)
            return
        with _api(f"Delete key pair {name}", ignore_not_found=True):
            self._ec2.delete_key_pair(KeyName=name)
        logger.info(f"Deleted key pair {name}")
